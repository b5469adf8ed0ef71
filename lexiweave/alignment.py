"""Re-anchoring of unpositioned model replacements to exact text offsets.

Models return ``(original, translation)`` pairs without offsets; they may be
reordered, repeated, partial or simply wrong. :func:`align_replacements`
resolves each pair against the source text with a forward-moving cursor so
repeated vocabulary maps onto successive occurrences, falls back to a search
over the whole text for out-of-order pairs, and never accepts two
overlapping ranges. The result is sorted by start offset and optionally
thinned to a replacement-rate budget.

The cursor-then-global strategy is a heuristic, not an optimal alignment.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .structures import Position, RawReplacementCandidate, Replacement

logger = logging.getLogger(__name__)

RATE_OVERSHOOT_TOLERANCE = 1.5


def coerce_candidates(payload: Any) -> List[RawReplacementCandidate]:
    """Normalise an untrusted payload into well-formed candidates.

    Anything that is not a list yields no candidates. Entries must carry
    non-empty string ``original`` and ``translation`` fields.
    """

    if not isinstance(payload, (list, tuple)):
        return []

    candidates: List[RawReplacementCandidate] = []
    for item in payload:
        if isinstance(item, RawReplacementCandidate):
            original, translation = item.original, item.translation
        elif isinstance(item, Mapping):
            original = item.get("original")
            translation = item.get("translation")
        else:
            continue
        if not isinstance(original, str) or not isinstance(translation, str):
            continue
        if not original or not translation:
            continue
        candidates.append(RawReplacementCandidate(original=original, translation=translation))
    return candidates


def _overlaps_any(position: Position, accepted: Sequence[Replacement]) -> bool:
    return any(position.overlaps(item.position) for item in accepted)


def _first_free_occurrence(
    source_text: str,
    fragment: str,
    accepted: Sequence[Replacement],
) -> Optional[Position]:
    """Find the leftmost occurrence of ``fragment`` clear of accepted ranges."""

    index = source_text.find(fragment)
    while index != -1:
        position = Position(index, index + len(fragment))
        if not _overlaps_any(position, accepted):
            return position
        index = source_text.find(fragment, index + 1)
    return None


def replacement_rate(source_text: str, replacements: Iterable[Replacement]) -> float:
    """Fraction of ``source_text`` characters covered by the replacements."""

    if not source_text:
        return 0.0
    consumed = sum(len(item.original) for item in replacements)
    return consumed / len(source_text)


def filter_by_replacement_rate(
    source_text: str,
    replacements: Sequence[Replacement],
    rate_target: float,
) -> List[Replacement]:
    """Keep replacements in position order while they fit the character budget."""

    budget = math.floor(len(source_text) * rate_target)
    filtered: List[Replacement] = []
    consumed = 0
    for item in replacements:
        size = len(item.original)
        if consumed + size <= budget:
            filtered.append(item)
            consumed += size
    return filtered


def align_replacements(
    source_text: str,
    raw_candidates: Any,
    rate_target: Optional[float] = None,
) -> List[Replacement]:
    """Resolve model candidates to sorted, non-overlapping replacements.

    Never raises for malformed candidates; only an out-of-range
    ``rate_target`` (a caller defect) raises :class:`ValueError`.
    """

    if rate_target is not None and not 0 < rate_target <= 1:
        raise ValueError(f"rate_target must be within (0, 1], got {rate_target!r}.")

    if not source_text:
        return []

    accepted: List[Replacement] = []
    cursor = 0

    for candidate in coerce_candidates(raw_candidates):
        fragment = candidate.original
        index = source_text.find(fragment, cursor)
        if index != -1:
            position = Position(index, index + len(fragment))
            if source_text[position.start:position.end] != fragment:
                continue
            if _overlaps_any(position, accepted):
                continue
            cursor = position.end
        else:
            position = _first_free_occurrence(source_text, fragment, accepted)
            if position is None:
                continue

        accepted.append(
            Replacement(
                original=fragment,
                translation=candidate.translation,
                position=position,
                is_new=True,
            )
        )

    accepted.sort(key=lambda item: item.position.start)

    if rate_target is None:
        return accepted

    actual = replacement_rate(source_text, accepted)
    if actual > rate_target * RATE_OVERSHOOT_TOLERANCE:
        filtered = filter_by_replacement_rate(source_text, accepted, rate_target)
        logger.warning(
            "Replacement rate %.1f%% exceeds target %.1f%%; kept %d of %d replacements.",
            actual * 100,
            rate_target * 100,
            len(filtered),
            len(accepted),
        )
        return filtered

    return accepted
