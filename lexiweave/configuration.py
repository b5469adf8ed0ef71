"""Settings for Lexiweave, layered from YAML files, ``.env`` and the environment.

Later layers win: discovered ``lexiweave`` YAML files first, then a ``.env``
file in the working directory, then process environment variables. Only
keys declared on :class:`LexiweaveConfig` are taken from the environment.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, Literal, Mapping, Sequence, Tuple

from dotenv import dotenv_values
from prepper import (
    Field,
    IoError,
    SchemaError,
    SchemaModel,
    ValidationError,
    model_validator,
)
from prepper.config import ConfigInstance
from prepper.loaders import _parse_file, _path_to_source, discover_file_paths
from prepper.merge import merge_layer
from prepper.provenance import ProvenanceRecorder

from .errors import TranslationProviderConfigurationError
from .structures import SegmenterConfig

APP_NAME = "Lexiweave"

PROVIDER_ALIASES: Dict[str, str] = {
    "openai": "openai",
    "azure_openai": "azure_openai",
    "azure_open_ai": "azure_openai",
    "azureopenai": "azure_openai",
    "azure": "azure_openai",
}

REQUIRED_CREDENTIALS: Dict[str, Tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "azure_openai": (
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_OPENAI_API_VERSION",
        "AZURE_OPENAI_DEPLOYMENT_NAME",
    ),
}


class LexiweaveConfig(SchemaModel):
    """Every setting Lexiweave reads."""

    LLM_PROVIDER: Literal["azure_openai", "openai"] = Field(
        default="openai",
        description="Backend used by the OpenAI-based replacement providers.",
    )
    AZURE_OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    AZURE_OPENAI_ENDPOINT: str | None = Field(default=None)
    AZURE_OPENAI_API_VERSION: str | None = Field(default=None)
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = Field(default=None)
    OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    OPENAI_BASE_URL: str | None = Field(default=None)
    LEXIWEAVE_PROVIDER: str = Field(
        default="openai",
        description="Replacement provider used when the command line names none.",
    )
    LEXIWEAVE_PROVIDER_DEBUG: bool = Field(default=False)
    LEXIWEAVE_FAILOVER_CONFIGS: str | None = Field(
        default=None,
        description="JSON file listing provider configurations for failover.",
    )
    LEXIWEAVE_FAILOVER_COOLDOWN: float = Field(
        default=60.0,
        description="Seconds a failed provider configuration is skipped.",
    )
    LEXIWEAVE_MAX_SEGMENT_LENGTH: int = Field(
        default=400,
        description="Longest paragraph submitted unsplit.",
    )
    LEXIWEAVE_MIN_SEGMENT_LENGTH: int = Field(
        default=20,
        description="Paragraphs shorter than this (trimmed) are ignored.",
    )
    LEXIWEAVE_MERGE_SMALL_SEGMENTS: bool = Field(default=True)
    LEXIWEAVE_REPLACEMENT_RATE: float = Field(
        default=0.3,
        description="Target fraction of characters to replace.",
    )
    LEXIWEAVE_REQUESTS_PER_SECOND: float = Field(
        default=0,
        description="Per-endpoint request limit; 0 disables throttling.",
    )

    @model_validator(mode="before")
    def _canonical_provider(data: Any) -> Any:
        # Unknown names fall back to plain OpenAI.
        if isinstance(data, dict) and isinstance(data.get("LLM_PROVIDER"), str):
            key = data["LLM_PROVIDER"].strip().lower().replace("-", "_")
            data["LLM_PROVIDER"] = PROVIDER_ALIASES.get(key, "openai")
        return data


def _known_keys() -> frozenset[str]:
    return frozenset(LexiweaveConfig.__field_infos__.keys())


def _iter_layers(app_dir: Path) -> Iterator[Tuple[str, str, Dict[str, Any]]]:
    """Yield ``(layer, source, values)`` from lowest to highest precedence."""

    for path, label in discover_file_paths(
        APP_NAME, "yaml", app_dir=app_dir, extra_paths=None
    ):
        parsed = _parse_file(path, "yaml")
        if not isinstance(parsed, Mapping):
            raise IoError(f"{path} must contain a mapping at the top level.")
        yield "file", _path_to_source(label, "yaml", path), dict(parsed)

    known = _known_keys()
    dotenv_path = app_dir / ".env"
    if dotenv_path.is_file():
        for key, value in sorted(dotenv_values(dotenv_path).items()):
            if key in known and value is not None:
                yield "env", f"env:.env:{key}", {key: value}

    for key in sorted(known & os.environ.keys()):
        yield "env", f"env:process:{key}", {key: os.environ[key]}


@lru_cache(maxsize=1)
def _load_config_instance(app_dir: Path | None = None) -> ConfigInstance:
    base_dir = app_dir or Path.cwd()
    provenance = ProvenanceRecorder()
    combined: Dict[str, Any] = {}
    try:
        for layer, source, values in _iter_layers(base_dir):
            merge_layer(
                combined, values, provenance=provenance, source=source, layer=layer
            )
        model = LexiweaveConfig.validate(combined, provenance=provenance)
    except IoError as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration files could not be read: {exc}"
        ) from exc
    except SchemaError as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration schema error: {exc}"
        ) from exc
    except ValidationError as exc:
        raise TranslationProviderConfigurationError(
            _format_validation_errors(exc.to_dict())
        ) from exc

    return ConfigInstance(
        model=model,
        provenance=provenance,
        env_prefix=None,
        schema_cls=LexiweaveConfig,
    )


def _format_validation_errors(entries: Sequence[Mapping[str, Any]]) -> str:
    lines = ["Invalid configuration:"]
    for entry in entries:
        path = entry.get("path") or ()
        if isinstance(path, (list, tuple)):
            path = ".".join(str(part) for part in path if part not in (None, ""))
        message = entry.get("message") or entry.get("msg") or "invalid value"
        source = entry.get("source")
        line = f"- {path}: {message}" if path else f"- {message}"
        lines.append(f"{line} (from {source})" if source else line)
    return "\n".join(lines)


def validate_provider_settings(settings: LexiweaveConfig) -> None:
    """Raise when credentials for the selected OpenAI backend are missing."""

    provider = settings.LLM_PROVIDER
    missing = [
        name
        for name in REQUIRED_CREDENTIALS.get(provider, ())
        if not getattr(settings, name, None)
    ]
    if missing:
        raise TranslationProviderConfigurationError(
            f"LLM_PROVIDER '{provider}' needs these settings: {', '.join(missing)}."
        )


def segmenter_config_from_settings(settings: LexiweaveConfig) -> SegmenterConfig:
    return SegmenterConfig(
        max_segment_length=settings.LEXIWEAVE_MAX_SEGMENT_LENGTH,
        min_segment_length=settings.LEXIWEAVE_MIN_SEGMENT_LENGTH,
        merge_small_segments=settings.LEXIWEAVE_MERGE_SMALL_SEGMENTS,
    )


def get_config(app_dir: Path | None = None) -> ConfigInstance:
    """Return the cached configuration instance, including provenance."""

    return _load_config_instance(app_dir=app_dir)


def get_settings(app_dir: Path | None = None) -> LexiweaveConfig:
    """Return the validated settings model."""

    return get_config(app_dir=app_dir).model()


def reset_settings_cache() -> None:
    _load_config_instance.cache_clear()
