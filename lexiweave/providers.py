"""Replacement provider abstractions."""

from __future__ import annotations

import json
import pathlib
import re
import sys
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Sequence, Tuple

from .errors import (
    TranslationProviderConfigurationError,
    TranslationProviderError,
)
from .parsing import parse_line_format, parse_model_reply
from .structures import ProviderReply, RawReplacementCandidate

if TYPE_CHECKING:
    from .configuration import LexiweaveConfig
    from .failover import ProviderConfig

WORD_PATTERN = re.compile(r"\w+(?:['’-]\w+)*", re.UNICODE)


def build_system_prompt(
    *,
    target_language: str,
    source_language: str | None,
    replacement_rate: float | None,
) -> str:
    """Instruction asking the model for unpositioned replacement pairs.

    Without a ``replacement_rate`` the model chooses how much to translate.
    """

    source_hint = (
        f"The text is written in {source_language}. " if source_language else ""
    )
    if replacement_rate is None:
        selection = "Pick the words and short phrases most useful to a learner "
    else:
        selection = (
            f"Pick fragments covering roughly {replacement_rate:.0%} of the characters "
        )
    return (
        "You help language learners by translating selected words and short "
        "phrases inside a passage. "
        f"{source_hint}"
        f"{selection}and translate each into {target_language}. "
        "Copy every original fragment exactly as it appears in the passage, "
        "in the order it appears. "
        "Respond strictly with an object shaped as "
        '{"replacements": [{"original": "...", "translation": "..."}]}. '
        "Do not add commentary. Do not wrap the JSON in markdown code fences."
    )


class ReplacementProvider(ABC):
    """Abstract adapter returning replacement candidates for one text."""

    endpoint: str = "default"
    name: str | None = None

    @abstractmethod
    def suggest(
        self,
        text: str,
        *,
        target_language: str,
        source_language: str | None = None,
        replacement_rate: float | None = 0.3,
        model: str | None = None,
    ) -> List[RawReplacementCandidate]:
        """Return unpositioned (original, translation) pairs for ``text``."""

    def request(self, text: str, **options: Any) -> ProviderReply:
        """Like :meth:`suggest`, also naming the configuration that answered."""

        return ProviderReply(self.suggest(text, **options), config_name=self.name)


class StaticReplacementProvider(ReplacementProvider):
    """Offline provider that looks words up in a glossary."""

    endpoint = "static"

    def __init__(
        self,
        glossary: Mapping[str, str] | None = None,
        *,
        name: str | None = None,
    ) -> None:
        self.name = name
        self.glossary: Dict[str, str] = {
            key.lower(): value for key, value in (glossary or {}).items() if key and value
        }

    def suggest(
        self,
        text: str,
        *,
        target_language: str,
        source_language: str | None = None,
        replacement_rate: float | None = 0.3,
        model: str | None = None,
    ) -> List[RawReplacementCandidate]:
        return [
            RawReplacementCandidate(match.group(0), self.glossary[match.group(0).lower()])
            for match in WORD_PATTERN.finditer(text)
            if match.group(0).lower() in self.glossary
        ]


def load_glossary(path: pathlib.Path) -> Dict[str, str]:
    """Read a glossary from JSON or ``original||translation`` lines."""

    content = pathlib.Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return {item.original: item.translation for item in parse_line_format(content)}
    if not isinstance(data, dict):
        raise TranslationProviderConfigurationError(
            f"Glossary {path} must be a JSON object mapping words to translations."
        )
    return {str(key): str(value) for key, value in data.items()}


def _import_openai() -> Any:
    try:
        import openai  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise TranslationProviderConfigurationError(
            "The openai package is required for OpenAI providers: pip install openai"
        ) from exc
    return openai


def _unwrap(value: Any) -> Any:
    # SDK text/json parts sometimes wrap their payload in a ``value`` attribute.
    return getattr(value, "value", value)


def _response_as_data(response: Any) -> Any:
    dump = getattr(response, "model_dump", None)
    if callable(dump):
        try:
            return dump()
        except Exception:  # pragma: no cover - debug output only
            return repr(response)
    return str(response)


def extract_response_content(response: Any) -> Any:
    """Return the first JSON or text payload of a Responses API result."""

    for item in getattr(response, "output", None) or []:
        for part in getattr(item, "content", None) or []:
            payload = _unwrap(getattr(part, "json", None))
            if isinstance(payload, (dict, list)):
                return payload
            text = _unwrap(getattr(part, "text", None))
            if text:
                return str(text)
    output_text = _unwrap(getattr(response, "output_text", None))
    return str(output_text) if output_text else None


def extract_message_content(response: Any) -> str | None:
    """Return the first non-empty assistant message of a chat completion."""

    for choice in getattr(response, "choices", None) or []:
        content = getattr(getattr(choice, "message", None), "content", None)
        if isinstance(content, list):
            texts = []
            for part in content:
                text = part.get("text") if isinstance(part, dict) else getattr(part, "text", None)
                if text:
                    texts.append(str(text))
            content = "\n".join(texts)
        if content:
            return str(content)
    return None


def create_openai_client(
    backend: str,
    *,
    api_key: str | None,
    base_url: str | None = None,
    api_version: str | None = None,
) -> Tuple[Any, str]:
    """Return an SDK client and the endpoint name requests are throttled under."""

    openai = _import_openai()
    if backend == "azure_openai":
        client = openai.AzureOpenAI(
            api_key=api_key,
            api_version=api_version,
            azure_endpoint=base_url,
        )
        return client, base_url or "azure_openai"
    return openai.OpenAI(api_key=api_key, base_url=base_url), base_url or "openai"


class OpenAIReplacementProvider(ReplacementProvider):
    """Asks an OpenAI or Azure OpenAI model through the Responses API.

    ``client`` bypasses settings entirely; it must expose the same surface as
    the ``openai`` SDK clients.
    """

    DEFAULT_MODEL = "gpt-5-mini"
    endpoint = "openai"

    def __init__(
        self,
        *,
        settings: LexiweaveConfig | None = None,
        debug: bool = False,
        client: Any = None,
        default_model: str | None = None,
        endpoint: str | None = None,
        name: str | None = None,
    ) -> None:
        self.debug = debug
        self.name = name
        if client is None:
            from .configuration import get_settings, validate_provider_settings

            settings = settings or get_settings()
            validate_provider_settings(settings)
            azure = settings.LLM_PROVIDER == "azure_openai"
            client, endpoint = create_openai_client(
                settings.LLM_PROVIDER,
                api_key=settings.AZURE_OPENAI_API_KEY if azure else settings.OPENAI_API_KEY,
                base_url=settings.AZURE_OPENAI_ENDPOINT if azure else settings.OPENAI_BASE_URL,
                api_version=settings.AZURE_OPENAI_API_VERSION,
            )
            if azure:
                default_model = default_model or settings.AZURE_OPENAI_DEPLOYMENT_NAME
        self._client = client
        self.endpoint = endpoint or self.endpoint
        self._default_model = default_model or self.DEFAULT_MODEL

    def suggest(
        self,
        text: str,
        *,
        target_language: str,
        source_language: str | None = None,
        replacement_rate: float | None = 0.3,
        model: str | None = None,
    ) -> List[RawReplacementCandidate]:
        if not text.strip():
            return []

        system_prompt = build_system_prompt(
            target_language=target_language,
            source_language=source_language,
            replacement_rate=replacement_rate,
        )
        self._debug("request.system_prompt", system_prompt)
        self._debug("request.text", text)
        try:
            response = self._request(system_prompt, text, model or self._default_model)
        except Exception as exc:
            raise TranslationProviderError(
                f"Model request failed: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc
        self._debug("response.raw", _response_as_data(response))

        candidates = parse_model_reply(self._content(response))
        self._debug(
            "response.candidates",
            [{"original": c.original, "translation": c.translation} for c in candidates],
        )
        return candidates

    def _request(self, system_prompt: str, text: str, model: str) -> Any:
        return self._client.responses.create(
            model=model,
            input=[
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": system_prompt}],
                },
                {"role": "user", "content": [{"type": "input_text", "text": text}]},
            ],
        )

    def _content(self, response: Any) -> Any:
        return extract_response_content(response)

    def _debug(self, label: str, payload: Any) -> None:
        if not self.debug:
            return
        if isinstance(payload, (dict, list)):
            try:
                payload = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
            except (TypeError, ValueError):
                payload = repr(payload)
        print(f"[lexiweave][provider-debug] {label}:\n{payload}", file=sys.stderr)


class LegacyOpenAIReplacementProvider(OpenAIReplacementProvider):
    """Same prompt over the Chat Completions API in JSON mode."""

    def _request(self, system_prompt: str, text: str, model: str) -> Any:
        return self._client.chat.completions.create(
            model=model,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
        )

    def _content(self, response: Any) -> Any:
        return extract_message_content(response)


PROVIDER_NAMES: Dict[str, str] = {
    "openai": "openai",
    "gpt": "openai",
    "default": "openai",
    "legacy-openai": "legacy",
    "legacy_openai": "legacy",
    "openai-legacy": "legacy",
    "legacy": "legacy",
    "static": "static",
    "glossary": "static",
    "mock": "static",
    "failover": "failover",
}


def build_provider(
    name: str | None,
    *,
    debug: bool = False,
    glossary: Mapping[str, str] | None = None,
    settings: LexiweaveConfig | None = None,
    failover_configs: Sequence[ProviderConfig] | None = None,
    cooldown_seconds: float = 60.0,
) -> ReplacementProvider:
    """Create a provider from its command-line name."""

    kind = PROVIDER_NAMES.get((name or "openai").strip().lower())
    if kind == "openai":
        return OpenAIReplacementProvider(settings=settings, debug=debug)
    if kind == "legacy":
        return LegacyOpenAIReplacementProvider(settings=settings, debug=debug)
    if kind == "static":
        return StaticReplacementProvider(glossary)
    if kind == "failover":
        from .failover import build_failover_provider

        if not failover_configs:
            raise TranslationProviderConfigurationError(
                "The failover provider needs a provider configuration file."
            )
        return build_failover_provider(
            failover_configs, debug=debug, cooldown_seconds=cooldown_seconds
        )
    raise TranslationProviderConfigurationError(
        f"Unknown translation provider '{name}'."
    )
