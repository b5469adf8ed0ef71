from types import SimpleNamespace

import pytest

pytest.importorskip("prepper")

from lexiweave import configuration  # noqa: E402
from lexiweave.errors import (  # noqa: E402
    SegmenterConfigurationError,
    TranslationProviderConfigurationError,
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in configuration._known_keys():
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    configuration.reset_settings_cache()
    yield tmp_path
    configuration.reset_settings_cache()


def test_defaults_load_without_any_source(clean_env):
    settings = configuration.get_settings(app_dir=clean_env)

    assert settings.LLM_PROVIDER == "openai"
    assert settings.OPENAI_API_KEY is None


def test_dotenv_and_environment_layers(clean_env, monkeypatch):
    (clean_env / ".env").write_text(
        "OPENAI_API_KEY=from-dotenv\nUNRELATED=ignored\n", encoding="utf-8"
    )
    monkeypatch.setenv("LLM_PROVIDER", "Azure-OpenAI")

    settings = configuration.get_settings(app_dir=clean_env)

    assert settings.OPENAI_API_KEY == "from-dotenv"
    assert settings.LLM_PROVIDER == "azure_openai"


def test_process_environment_overrides_dotenv(clean_env, monkeypatch):
    (clean_env / ".env").write_text("OPENAI_API_KEY=from-dotenv\n", encoding="utf-8")
    monkeypatch.setenv("OPENAI_API_KEY", "from-process")

    assert configuration.get_settings(app_dir=clean_env).OPENAI_API_KEY == "from-process"


def test_validate_provider_settings_lists_missing_keys():
    settings = SimpleNamespace(
        LLM_PROVIDER="azure_openai",
        AZURE_OPENAI_API_KEY="key",
        AZURE_OPENAI_ENDPOINT=None,
        AZURE_OPENAI_API_VERSION="2024-06-01",
        AZURE_OPENAI_DEPLOYMENT_NAME=None,
    )

    with pytest.raises(TranslationProviderConfigurationError) as excinfo:
        configuration.validate_provider_settings(settings)

    assert "AZURE_OPENAI_ENDPOINT" in str(excinfo.value)
    assert "AZURE_OPENAI_DEPLOYMENT_NAME" in str(excinfo.value)

    configuration.validate_provider_settings(
        SimpleNamespace(LLM_PROVIDER="openai", OPENAI_API_KEY="sk-test")
    )


def test_segmenter_config_from_settings():
    settings = SimpleNamespace(
        LEXIWEAVE_MAX_SEGMENT_LENGTH=120,
        LEXIWEAVE_MIN_SEGMENT_LENGTH=10,
        LEXIWEAVE_MERGE_SMALL_SEGMENTS=False,
    )

    config = configuration.segmenter_config_from_settings(settings)

    assert (config.max_segment_length, config.min_segment_length) == (120, 10)
    assert config.merge_small_segments is False

    settings.LEXIWEAVE_MIN_SEGMENT_LENGTH = 500
    with pytest.raises(SegmenterConfigurationError):
        configuration.segmenter_config_from_settings(settings)
