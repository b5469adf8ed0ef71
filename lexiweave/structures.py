"""Core data structures for the Lexiweave overlay pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from .errors import SegmenterConfigurationError


@dataclass(frozen=True, eq=False)
class Anchor:
    """Structural element a paragraph (or segment) is attached to."""

    kind: str
    path: str
    location: str = ""
    node: Any = field(default=None, repr=False)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Anchor):
            return NotImplemented
        return self.path == other.path

    def __hash__(self) -> int:
        return hash(self.path)


@dataclass(frozen=True)
class TextLeaf:
    """A text-bearing leaf node such as a run or a line."""

    leaf_id: str
    text: str
    node: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class ParagraphRecord:
    """A paragraph produced by a document handler."""

    text_content: str
    anchor: Anchor
    leaf_nodes: Tuple[TextLeaf, ...]

    @classmethod
    def from_leaves(cls, anchor: Anchor, leaves: List[TextLeaf]) -> "ParagraphRecord":
        return cls(
            text_content="".join(leaf.text for leaf in leaves),
            anchor=anchor,
            leaf_nodes=tuple(leaves),
        )


@dataclass(frozen=True)
class Segment:
    """A bounded unit of text submitted as one translation request."""

    segment_id: str
    text_content: str
    anchor: Anchor
    anchors: Tuple[Anchor, ...]
    leaf_nodes: Tuple[TextLeaf, ...]
    fingerprint: str
    structural_path: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.segment_id,
            "text": self.text_content,
            "fingerprint": self.fingerprint,
            "structuralPath": self.structural_path,
            "locations": [anchor.location for anchor in self.anchors],
            "leaves": [leaf.leaf_id for leaf in self.leaf_nodes],
        }


@dataclass(frozen=True)
class RawReplacementCandidate:
    """Unpositioned (original, translation) pair returned by a model."""

    original: str
    translation: str


@dataclass(frozen=True)
class Position:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Position") -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class Replacement:
    """A position-exact substitution directive within a segment's text."""

    original: str
    translation: str
    position: Position
    is_new: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original,
            "translation": self.translation,
            "position": {"start": self.position.start, "end": self.position.end},
            "isNew": self.is_new,
        }


@dataclass(frozen=True)
class SegmenterConfig:
    """Bounds applied during one segmentation pass."""

    max_segment_length: int = 400
    min_segment_length: int = 20
    merge_small_segments: bool = True

    def __post_init__(self) -> None:
        if self.min_segment_length <= 0:
            raise SegmenterConfigurationError(
                "min_segment_length must be greater than zero "
                f"(got {self.min_segment_length})."
            )
        if self.max_segment_length <= self.min_segment_length:
            raise SegmenterConfigurationError(
                "max_segment_length must be greater than min_segment_length "
                f"(got {self.max_segment_length} <= {self.min_segment_length})."
            )

    def merged(self, **changes: Any) -> "SegmenterConfig":
        """Return a validated copy with the given fields replaced."""

        return replace(self, **changes)


@dataclass(frozen=True)
class ProviderAttempt:
    """One call made against a provider configuration."""

    config_name: str
    endpoint: str
    success: bool
    duration_seconds: float
    error: Optional[str] = None
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config_name,
            "endpoint": self.endpoint,
            "success": self.success,
            "error": self.error,
            "statusCode": self.status_code,
            "durationSeconds": round(self.duration_seconds, 3),
        }


@dataclass
class ProviderReply:
    """Candidates from a provider plus which configuration produced them."""

    candidates: Any
    config_name: Optional[str] = None
    attempts: List[ProviderAttempt] = field(default_factory=list)


@dataclass
class SegmentResult:
    """Outcome of processing one segment through the pipeline."""

    segment: Segment
    replacements: List[Replacement] = field(default_factory=list)
    candidate_count: int = 0
    skipped: bool = False
    cached: bool = False
    error: Optional[str] = None
    provider_config: Optional[str] = None
    attempts: List[ProviderAttempt] = field(default_factory=list)

    @property
    def replaced_characters(self) -> int:
        return sum(item.position.length for item in self.replacements)

    def to_dict(self) -> Dict[str, Any]:
        data = self.segment.to_dict()
        data.update(
            {
                "candidates": self.candidate_count,
                "skipped": self.skipped,
                "cached": self.cached,
                "error": self.error,
                "providerConfig": self.provider_config,
                "attempts": [attempt.to_dict() for attempt in self.attempts],
                "replacedCharacters": self.replaced_characters,
                "replacements": [item.to_dict() for item in self.replacements],
            }
        )
        return data
