import json
from types import SimpleNamespace

import pytest

pytest.importorskip("prepper")

from lexiweave import cli  # noqa: E402


def _settings(**overrides):
    values = dict(
        LLM_PROVIDER="openai",
        LEXIWEAVE_PROVIDER="openai",
        LEXIWEAVE_PROVIDER_DEBUG=False,
        LEXIWEAVE_FAILOVER_CONFIGS=None,
        LEXIWEAVE_FAILOVER_COOLDOWN=60.0,
        LEXIWEAVE_MAX_SEGMENT_LENGTH=400,
        LEXIWEAVE_MIN_SEGMENT_LENGTH=20,
        LEXIWEAVE_MERGE_SMALL_SEGMENTS=True,
        LEXIWEAVE_REPLACEMENT_RATE=0.3,
        LEXIWEAVE_REQUESTS_PER_SECOND=0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "get_settings", lambda: _settings())
    source = tmp_path / "story.txt"
    source.write_text(
        "The cat sat on the mat with another cat.\n\nNothing to replace in this block.\n",
        encoding="utf-8",
    )
    glossary = tmp_path / "glossary.txt"
    glossary.write_text("cat||chat\nmat||tapis\n", encoding="utf-8")
    return tmp_path, source, glossary


def test_static_run_writes_report(workspace, capsys):
    tmp_path, source, glossary = workspace

    exit_code = cli.main(
        [
            str(source),
            "-t", "French",
            "-p", "static",
            "-g", str(glossary),
            "-r", "1",
            "--non-interactive",
        ]
    )

    assert exit_code == 0
    report = tmp_path / "story_replacements.json"
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["targetLanguage"] == "French"
    originals = [
        item["original"] for segment in data["segments"] for item in segment["replacements"]
    ]
    assert originals == ["cat", "mat", "cat"]
    assert "Analysis complete." in capsys.readouterr().out


def test_existing_report_is_not_overwritten(workspace):
    tmp_path, source, glossary = workspace
    report = tmp_path / "report.json"
    report.write_text("{}", encoding="utf-8")

    exit_code = cli.main([str(source), "-t", "French", "-p", "static", "-o", str(report)])

    assert exit_code == 1
    assert report.read_text(encoding="utf-8") == "{}"


def test_invalid_segment_bounds_fail(workspace, capsys):
    _, source, _ = workspace

    exit_code = cli.main(
        [str(source), "-t", "French", "-p", "static", "--max-segment-length", "5"]
    )

    assert exit_code == 1
    assert "Invalid segment bounds" in capsys.readouterr().out


def test_unsupported_file_type(workspace):
    tmp_path, _, _ = workspace
    source = tmp_path / "image.png"
    source.write_bytes(b"\x89PNG")

    assert cli.main([str(source), "-t", "French", "-p", "static"]) == 1


def test_unknown_provider(workspace, capsys):
    _, source, _ = workspace

    assert cli.main([str(source), "-t", "French", "-p", "carrier-pigeon"]) == 1
    assert "Unknown translation provider" in capsys.readouterr().out


def test_derive_report_path(tmp_path):
    assert cli.derive_report_path(tmp_path / "deck.pptx") == tmp_path / "deck_replacements.json"


def test_failover_configs_select_failover_provider(workspace):
    tmp_path, source, glossary = workspace
    configs = tmp_path / "providers.json"
    configs.write_text(
        json.dumps([{"name": "offline", "provider": "static", "glossary": str(glossary)}]),
        encoding="utf-8",
    )

    exit_code = cli.main(
        [str(source), "-t", "French", "--failover-configs", str(configs), "-r", "1"]
    )

    assert exit_code == 0
    data = json.loads((tmp_path / "story_replacements.json").read_text(encoding="utf-8"))
    assert data["provider"] == "failover"
    first = data["segments"][0]
    assert first["providerConfig"] == "offline"
    assert [attempt["success"] for attempt in first["attempts"]] == [True]
    assert [item["original"] for item in first["replacements"]] == ["cat", "mat", "cat"]


def test_failover_without_configs_is_a_configuration_error(workspace, capsys):
    _, source, _ = workspace

    assert cli.main([str(source), "-t", "French", "-p", "failover"]) == 1
    assert "provider configuration file" in capsys.readouterr().out
