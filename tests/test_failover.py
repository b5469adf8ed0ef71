import json

import pytest

from lexiweave.errors import TranslationProviderConfigurationError, TranslationProviderError
from lexiweave.failover import (
    FailoverProvider,
    ProviderConfig,
    is_retryable_error,
    load_provider_configs,
    provider_from_config,
)
from lexiweave.pipeline import OverlayRunner
from lexiweave.providers import ReplacementProvider, StaticReplacementProvider, build_provider
from lexiweave.structures import RawReplacementCandidate as Candidate
from lexiweave.structures import SegmenterConfig

from conftest import make_paragraph


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class NamedProvider(ReplacementProvider):
    def __init__(self, name, outcomes):
        self.name = name
        self.endpoint = f"https://{name}.example"
        self.outcomes = list(outcomes)
        self.calls = 0

    def suggest(self, text, **kwargs):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else []
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _rate_limited():
    return TranslationProviderError("Error code: 429 - slow down", status_code=429)


def test_next_config_answers_after_retryable_failure():
    clock = FakeClock()
    primary = NamedProvider("primary", [_rate_limited()])
    backup = NamedProvider("backup", [[Candidate("cat", "chat")]])
    failover = FailoverProvider([primary, backup], cooldown_seconds=60, clock=clock)

    reply = failover.request("The cat.", target_language="French")

    assert reply.candidates == [Candidate("cat", "chat")]
    assert reply.config_name == "backup"
    assert [(a.config_name, a.success, a.status_code) for a in reply.attempts] == [
        ("primary", False, 429),
        ("backup", True, None),
    ]
    assert failover.in_cooldown("primary")
    assert not failover.in_cooldown("backup")
    assert failover.status()["primary"].failures == 1


def test_non_retryable_failure_stops_walk():
    primary = NamedProvider(
        "primary", [TranslationProviderError("Invalid API key", status_code=401)]
    )
    backup = NamedProvider("backup", [[Candidate("cat", "chat")]])
    failover = FailoverProvider([primary, backup], clock=FakeClock())

    with pytest.raises(TranslationProviderError) as excinfo:
        failover.request("The cat.", target_language="French")

    assert backup.calls == 0
    assert excinfo.value.retryable is False
    assert excinfo.value.status_code == 401
    assert [attempt.config_name for attempt in excinfo.value.attempts] == ["primary"]


def test_cooled_down_config_is_used_again_after_expiry():
    clock = FakeClock()
    primary = NamedProvider("primary", [_rate_limited(), [Candidate("mat", "tapis")]])
    backup = NamedProvider("backup", [[], []])
    failover = FailoverProvider([primary, backup], cooldown_seconds=60, clock=clock)

    assert failover.request("x", target_language="French").config_name == "backup"

    clock.now = 30
    assert failover.request("x", target_language="French").config_name == "backup"
    assert primary.calls == 1

    clock.now = 61
    reply = failover.request("x", target_language="French")
    assert reply.config_name == "primary"
    assert reply.candidates == [Candidate("mat", "tapis")]
    assert not failover.in_cooldown("primary")


def test_all_configs_cooling_down():
    clock = FakeClock()
    only = NamedProvider("only", [_rate_limited()])
    failover = FailoverProvider([only], cooldown_seconds=60, clock=clock)

    with pytest.raises(TranslationProviderError):
        failover.request("x", target_language="French")
    with pytest.raises(TranslationProviderError) as excinfo:
        failover.request("x", target_language="French")

    assert "cooling down" in str(excinfo.value)
    assert excinfo.value.retryable is True
    assert only.calls == 1


def test_preferred_config_rotates():
    first = NamedProvider("first", [[], []])
    second = NamedProvider("second", [[], []])
    failover = FailoverProvider([first, second], clock=FakeClock())

    names = [failover.request("x", target_language="French").config_name for _ in range(4)]

    assert names == ["first", "second", "first", "second"]


def test_retryable_error_classification():
    assert is_retryable_error(TranslationProviderError("boom", status_code=503))
    assert is_retryable_error(TranslationProviderError("Model request failed: Request timed out."))
    assert is_retryable_error(TranslationProviderError("odd", retryable=True))
    assert not is_retryable_error(TranslationProviderError("bad request", status_code=400))


def test_failover_result_is_recorded_on_segment():
    primary = NamedProvider("primary", [TranslationProviderError("503 unavailable")])
    backup = StaticReplacementProvider({"cat": "chat"}, name="backup")
    failover = FailoverProvider([primary, backup], clock=FakeClock())
    runner = OverlayRunner(
        provider=failover,
        target_language="French",
        replacement_rate=None,
        segmenter_config=SegmenterConfig(200, 5, merge_small_segments=False),
        max_workers=1,
        sleep=lambda _: None,
    )

    [result] = runner.process_root([make_paragraph("body/p[0]", ["the cat sat here"])])

    assert result.provider_config == "backup"
    assert [attempt.success for attempt in result.attempts] == [False, True]
    data = result.to_dict()
    assert data["providerConfig"] == "backup"
    assert data["attempts"][0]["config"] == "primary"


def test_load_provider_configs(tmp_path):
    path = tmp_path / "providers.json"
    path.write_text(
        json.dumps(
            [
                {"name": "backup", "provider": "static", "priority": 2},
                {"name": "off", "provider": "static", "enabled": False},
                {"name": "main", "api_key_env": "MAIN_KEY", "model": "gpt-test", "priority": 1},
            ]
        ),
        encoding="utf-8",
    )

    configs = load_provider_configs(path)

    assert [config.name for config in configs] == ["main", "backup"]
    assert configs[0].model == "gpt-test"


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "not-a-list"},
        [{"provider": "static"}],
        [{"name": "a", "colour": "blue"}],
        [{"name": "a"}, {"name": "a"}],
    ],
)
def test_invalid_provider_configs_are_rejected(tmp_path, payload):
    path = tmp_path / "providers.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(TranslationProviderConfigurationError):
        load_provider_configs(path)


def test_provider_from_config(tmp_path, monkeypatch):
    glossary = tmp_path / "glossary.json"
    glossary.write_text('{"cat": "chat"}', encoding="utf-8")

    static = provider_from_config(
        ProviderConfig(name="local", provider="static", glossary=str(glossary))
    )
    assert static.name == "local"
    assert static.suggest("a cat", target_language="French") == [Candidate("cat", "chat")]

    monkeypatch.delenv("MISSING_KEY", raising=False)
    with pytest.raises(TranslationProviderConfigurationError):
        provider_from_config(ProviderConfig(name="remote", api_key_env="MISSING_KEY"))
    with pytest.raises(TranslationProviderConfigurationError):
        provider_from_config(ProviderConfig(name="odd", provider="carrier-pigeon"))

    monkeypatch.setenv("MAIN_KEY", "sk-from-env")
    assert ProviderConfig(name="main", api_key_env="MAIN_KEY").resolve_api_key() == "sk-from-env"


def test_build_provider_failover():
    configs = [
        ProviderConfig(name="one", provider="static"),
        ProviderConfig(name="two", provider="glossary", enabled=False),
    ]

    provider = build_provider("failover", failover_configs=configs, cooldown_seconds=5)

    assert isinstance(provider, FailoverProvider)
    assert provider.endpoint == "failover:one"
    assert provider.cooldown_seconds == 5
    with pytest.raises(TranslationProviderConfigurationError):
        build_provider("failover")
