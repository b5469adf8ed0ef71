"""Failover across an ordered list of provider configurations.

Each request starts at the next configuration in rotation and falls through
the remaining ones. A configuration that fails is put into cooldown and is
skipped until the cooldown expires. Errors that look permanent (bad request,
authentication) stop the walk instead of trying the next configuration.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import threading
import time
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from .errors import TranslationProviderConfigurationError, TranslationProviderError
from .providers import (
    PROVIDER_NAMES,
    LegacyOpenAIReplacementProvider,
    OpenAIReplacementProvider,
    ReplacementProvider,
    StaticReplacementProvider,
    create_openai_client,
    load_glossary,
)
from .structures import ProviderAttempt, ProviderReply, RawReplacementCandidate

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 60.0
RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})
RETRYABLE_KEYWORDS: Tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "quota exceeded",
    "timeout",
    "timed out",
    "network error",
    "connection error",
    "connection refused",
    "connection reset",
    "temporarily unavailable",
    "429",
    "500",
    "502",
    "503",
    "504",
    # Some providers answer 403 for a blocked key; another key may still work.
    "403",
)


def is_retryable_error(
    exc: BaseException,
    status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES,
) -> bool:
    """Whether another configuration is worth trying after ``exc``."""

    if getattr(exc, "status_code", None) in status_codes:
        return True
    message = str(exc).lower()
    if any(keyword in message for keyword in RETRYABLE_KEYWORDS):
        return True
    return bool(getattr(exc, "retryable", False))


@dataclass(frozen=True)
class ProviderConfig:
    """One entry of a failover configuration file."""

    name: str
    provider: str = "openai"
    backend: str = "openai"
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None
    api_version: Optional[str] = None
    model: Optional[str] = None
    glossary: Optional[str] = None
    priority: int = 0
    enabled: bool = True

    def resolve_api_key(self) -> Optional[str]:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


def load_provider_configs(path: pathlib.Path) -> List[ProviderConfig]:
    """Read a JSON list of provider configurations.

    Disabled entries are dropped; the rest are ordered by ``priority`` and
    then by their position in the file.
    """

    path = pathlib.Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise TranslationProviderConfigurationError(
            f"Failover configuration {path} is not valid JSON: {exc}"
        ) from exc
    if not isinstance(data, list):
        raise TranslationProviderConfigurationError(
            f"Failover configuration {path} must be a JSON list of objects."
        )

    known = {item.name for item in fields(ProviderConfig)}
    configs: List[ProviderConfig] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict) or not entry.get("name"):
            raise TranslationProviderConfigurationError(
                f"Entry {index} of {path} must be an object with a 'name'."
            )
        unknown = sorted(set(entry) - known)
        if unknown:
            raise TranslationProviderConfigurationError(
                f"Entry '{entry['name']}' of {path} has unknown keys: {', '.join(unknown)}."
            )
        configs.append(ProviderConfig(**entry))

    names = [config.name for config in configs]
    if len(set(names)) != len(names):
        raise TranslationProviderConfigurationError(
            f"Provider configuration names in {path} must be unique."
        )
    enabled = [config for config in configs if config.enabled]
    return sorted(enabled, key=lambda config: config.priority)


def provider_from_config(config: ProviderConfig, *, debug: bool = False) -> ReplacementProvider:
    kind = PROVIDER_NAMES.get(config.provider.strip().lower())
    if kind == "static":
        glossary = load_glossary(pathlib.Path(config.glossary)) if config.glossary else {}
        return StaticReplacementProvider(glossary, name=config.name)
    if kind in ("openai", "legacy"):
        api_key = config.resolve_api_key()
        if not api_key:
            raise TranslationProviderConfigurationError(
                f"Provider configuration '{config.name}' has no API key."
            )
        client, endpoint = create_openai_client(
            config.backend,
            api_key=api_key,
            base_url=config.base_url,
            api_version=config.api_version,
        )
        provider_cls = (
            LegacyOpenAIReplacementProvider if kind == "legacy" else OpenAIReplacementProvider
        )
        return provider_cls(
            client=client,
            endpoint=endpoint,
            default_model=config.model,
            debug=debug,
            name=config.name,
        )
    raise TranslationProviderConfigurationError(
        f"Provider configuration '{config.name}' uses unsupported provider "
        f"'{config.provider}'."
    )


@dataclass
class ConfigStatus:
    successes: int = 0
    failures: int = 0
    cooldown_until: Optional[float] = None
    last_error: Optional[str] = None


class FailoverProvider(ReplacementProvider):
    """Tries several providers in turn until one answers."""

    def __init__(
        self,
        providers: Sequence[ReplacementProvider],
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        retryable_status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not providers:
            raise TranslationProviderConfigurationError(
                "Failover needs at least one enabled provider configuration."
            )
        self._members: List[Tuple[str, ReplacementProvider]] = [
            (provider.name or f"{provider.endpoint}#{index}", provider)
            for index, provider in enumerate(providers)
        ]
        names = [name for name, _ in self._members]
        self.endpoint = "failover:" + ",".join(names)
        self.cooldown_seconds = cooldown_seconds
        self.retryable_status_codes = retryable_status_codes
        self._clock = clock
        self._status: Dict[str, ConfigStatus] = {name: ConfigStatus() for name in names}
        self._rotation = 0
        self._lock = threading.Lock()

    def in_cooldown(self, name: str) -> bool:
        with self._lock:
            return self._cooling(name, self._clock())

    def _cooling(self, name: str, now: float) -> bool:
        until = self._status[name].cooldown_until
        return until is not None and now < until

    def status(self) -> Dict[str, ConfigStatus]:
        with self._lock:
            return {
                name: ConfigStatus(**vars(status)) for name, status in self._status.items()
            }

    def failover_queue(self) -> List[Tuple[str, ReplacementProvider]]:
        """Configurations to try for the next request, preferred one first."""

        with self._lock:
            now = self._clock()
            ready = [member for member in self._members if not self._cooling(member[0], now)]
            if not ready:
                return []
            preferred = ready[self._rotation % len(ready)]
            self._rotation += 1
        return [preferred] + [member for member in ready if member is not preferred]

    def _mark_success(self, name: str) -> None:
        with self._lock:
            status = self._status[name]
            status.successes += 1
            status.cooldown_until = None

    def _mark_failure(self, name: str, message: str) -> None:
        with self._lock:
            status = self._status[name]
            status.failures += 1
            status.last_error = message
            status.cooldown_until = self._clock() + self.cooldown_seconds

    def request(self, text: str, **options: Any) -> ProviderReply:
        queue = self.failover_queue()
        if not queue:
            raise TranslationProviderError(
                "Every provider configuration is cooling down after errors.",
                retryable=True,
            )

        attempts: List[ProviderAttempt] = []
        last_error: Optional[TranslationProviderError] = None
        retryable = False
        for position, (name, provider) in enumerate(queue, start=1):
            logger.debug("Attempt %d/%d with provider configuration %s.", position, len(queue), name)
            started = self._clock()
            try:
                candidates = provider.suggest(text, **options)
            except TranslationProviderError as exc:
                attempts.append(
                    ProviderAttempt(
                        config_name=name,
                        endpoint=provider.endpoint,
                        success=False,
                        duration_seconds=self._clock() - started,
                        error=str(exc),
                        status_code=exc.status_code,
                    )
                )
                self._mark_failure(name, str(exc))
                last_error = exc
                retryable = is_retryable_error(exc, self.retryable_status_codes)
                logger.warning("Provider configuration %s failed: %s", name, exc)
                if not retryable:
                    break
                continue

            attempts.append(
                ProviderAttempt(
                    config_name=name,
                    endpoint=provider.endpoint,
                    success=True,
                    duration_seconds=self._clock() - started,
                )
            )
            self._mark_success(name)
            return ProviderReply(candidates, config_name=name, attempts=attempts)

        raise TranslationProviderError(
            str(last_error),
            status_code=last_error.status_code,
            retryable=retryable,
            attempts=attempts,
        ) from last_error

    def suggest(self, text: str, **options: Any) -> List[RawReplacementCandidate]:
        return self.request(text, **options).candidates


def build_failover_provider(
    configs: Sequence[ProviderConfig],
    *,
    debug: bool = False,
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
) -> FailoverProvider:
    providers = [provider_from_config(config, debug=debug) for config in configs if config.enabled]
    return FailoverProvider(providers, cooldown_seconds=cooldown_seconds)
