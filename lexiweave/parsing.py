"""Tolerant parsing of raw model replies into replacement candidates."""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional

from .alignment import coerce_candidates
from .structures import RawReplacementCandidate

CODE_FENCE_PATTERN = re.compile(r"```[\s\S]*?```")
FALLBACK_SEPARATORS = ("→", "->", ":", "=", "|")


def strip_code_fence(text: str) -> str:
    """Remove leading/trailing markdown code fences if present."""

    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped

    # Drop opening fence and optional language hint.
    first_newline = stripped.find("\n")
    if first_newline == -1:
        return stripped
    body = stripped[first_newline + 1 :]
    closing_index = body.rfind("```")
    if closing_index != -1:
        body = body[:closing_index]
    return body.strip()


def extract_candidate_list(payload: Any) -> Any:
    """Return the replacements list carried by a decoded JSON payload."""

    if isinstance(payload, dict):
        return payload.get("replacements")
    return payload


def _parse_line(line: str) -> Optional[RawReplacementCandidate]:
    if "||" in line:
        original, _, rest = line.partition("||")
        translation = rest.split("||", 1)[0]
        if original.strip() and translation.strip():
            return RawReplacementCandidate(original.strip(), translation.strip())

    for separator in FALLBACK_SEPARATORS:
        if separator not in line:
            continue
        parts = line.split(separator)
        original, translation = parts[0].strip(), parts[1].strip()
        if original and translation:
            return RawReplacementCandidate(original, translation)
    return None


def parse_line_format(text: str) -> List[RawReplacementCandidate]:
    """Parse ``original||translation`` lines with looser separators as fallback."""

    cleaned = CODE_FENCE_PATTERN.sub("", text)
    candidates: List[RawReplacementCandidate] = []
    for line in cleaned.splitlines():
        line = line.strip()
        if not line:
            continue
        candidate = _parse_line(line)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def parse_model_reply(content: Any) -> List[RawReplacementCandidate]:
    """Turn a model reply (text or decoded JSON) into candidates.

    Never raises: anything unusable yields an empty list.
    """

    if content is None:
        return []
    if isinstance(content, (dict, list, tuple)):
        return coerce_candidates(extract_candidate_list(content))
    if not isinstance(content, str):
        return []

    text = strip_code_fence(content)
    if not text:
        return []
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        return parse_line_format(text)
    if isinstance(decoded, (dict, list)):
        return coerce_candidates(extract_candidate_list(decoded))
    return []
