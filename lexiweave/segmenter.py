"""Paragraph segmentation into bounded, re-identifiable translation units."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Optional, Sequence

from .documents import collect_paragraphs
from .identity import IdentityService
from .structures import Anchor, ParagraphRecord, Segment, SegmenterConfig, TextLeaf

logger = logging.getLogger(__name__)

ParagraphSource = Callable[[Any], Iterable[ParagraphRecord]]


class ContentSegmenter:
    """Turns paragraph records into sized translation segments.

    Paragraphs shorter than ``min_segment_length`` (after trimming) are
    dropped. Paragraphs longer than ``max_segment_length`` are split at leaf
    boundaries only, and adjacent small segments can be merged afterwards.
    Output is a pure function of the root contents and the active config.
    """

    def __init__(
        self,
        config: Optional[SegmenterConfig] = None,
        *,
        paragraph_source: ParagraphSource = collect_paragraphs,
        identity: Optional[IdentityService] = None,
    ) -> None:
        self._config = config or SegmenterConfig()
        self.paragraph_source = paragraph_source
        self.identity = identity or IdentityService()

    @property
    def config(self) -> SegmenterConfig:
        return self._config

    def update_config(self, **changes: Any) -> SegmenterConfig:
        """Replace config fields between passes."""

        self._config = self._config.merged(**changes)
        return self._config

    def segment_content(self, root: Any) -> List[Segment]:
        """Segment every qualifying paragraph reachable from ``root``."""

        config = self._config
        paragraphs = list(self.paragraph_source(root) or [])
        segments: List[Segment] = []
        dropped = 0

        for paragraph in paragraphs:
            if len(paragraph.text_content.strip()) < config.min_segment_length:
                dropped += 1
                continue

            path = self.identity.structural_path(paragraph.anchor)
            if len(paragraph.text_content) <= config.max_segment_length:
                fingerprint = self.identity.fingerprint(paragraph.text_content, path)
                segments.append(
                    Segment(
                        segment_id=f"{paragraph.anchor.kind}-{fingerprint}",
                        text_content=paragraph.text_content,
                        anchor=paragraph.anchor,
                        anchors=(paragraph.anchor,),
                        leaf_nodes=tuple(paragraph.leaf_nodes),
                        fingerprint=fingerprint,
                        structural_path=path,
                    )
                )
            else:
                segments.extend(
                    self._split_long_paragraph(
                        paragraph.leaf_nodes,
                        paragraph.anchor,
                        path,
                        config.max_segment_length,
                    )
                )

        if config.merge_small_segments:
            segments = self._merge_small_segments(segments, config.min_segment_length)

        logger.debug(
            "Segmented %d paragraphs (%d dropped) into %d segments.",
            len(paragraphs),
            dropped,
            len(segments),
        )
        return segments

    def _split_long_paragraph(
        self,
        leaves: Sequence[TextLeaf],
        anchor: Anchor,
        path: str,
        budget: int,
    ) -> List[Segment]:
        """Greedily pack whole leaves into segments within the budget."""

        segments: List[Segment] = []
        group: List[TextLeaf] = []
        running_total = 0

        for leaf in leaves:
            size = len(leaf.text)
            if running_total + size > budget and group:
                segments.append(self._build_split_segment(group, anchor, path, len(segments)))
                group = []
                running_total = 0
            group.append(leaf)
            running_total += size

        if group:
            segments.append(self._build_split_segment(group, anchor, path, len(segments)))

        return segments

    def _build_split_segment(
        self,
        leaves: List[TextLeaf],
        anchor: Anchor,
        path: str,
        index: int,
    ) -> Segment:
        text = "".join(leaf.text for leaf in leaves)
        indexed_path = f"{path}[{index}]"
        fingerprint = self.identity.fingerprint(text, indexed_path)
        return Segment(
            segment_id=f"{anchor.kind}-{fingerprint}-{index}",
            text_content=text,
            anchor=anchor,
            anchors=(anchor,),
            leaf_nodes=tuple(leaves),
            fingerprint=fingerprint,
            structural_path=indexed_path,
        )

    def _merge_small_segments(
        self,
        segments: List[Segment],
        min_length: int,
    ) -> List[Segment]:
        """Group adjacent segments until a group reaches twice the minimum."""

        if len(segments) <= 1:
            return segments

        threshold = min_length * 2
        merged: List[Segment] = []
        group: List[Segment] = []
        running_total = 0

        for idx, segment in enumerate(segments):
            group.append(segment)
            running_total += len(segment.text_content)
            if running_total >= threshold or idx == len(segments) - 1:
                merged.append(group[0] if len(group) == 1 else self._build_merged_segment(group))
                group = []
                running_total = 0

        return merged

    def _build_merged_segment(self, group: List[Segment]) -> Segment:
        text = "".join(segment.text_content for segment in group)
        path = "|".join(segment.structural_path for segment in group)
        anchors: List[Anchor] = []
        for segment in group:
            for anchor in segment.anchors:
                if anchor not in anchors:
                    anchors.append(anchor)
        fingerprint = self.identity.fingerprint(text, path)
        return Segment(
            segment_id=f"merged-{fingerprint}",
            text_content=text,
            anchor=group[0].anchor,
            anchors=tuple(anchors),
            leaf_nodes=tuple(leaf for segment in group for leaf in segment.leaf_nodes),
            fingerprint=fingerprint,
            structural_path=path,
        )


def segment_content(
    root: Any,
    config: Optional[SegmenterConfig] = None,
    *,
    paragraph_source: ParagraphSource = collect_paragraphs,
) -> List[Segment]:
    """Convenience wrapper around a one-off :class:`ContentSegmenter` pass."""

    return ContentSegmenter(config, paragraph_source=paragraph_source).segment_content(root)
