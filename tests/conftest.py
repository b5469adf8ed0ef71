from __future__ import annotations

from typing import List

from lexiweave.structures import Anchor, ParagraphRecord, TextLeaf


def make_paragraph(path: str, leaves: List[str], *, kind: str = "p") -> ParagraphRecord:
    anchor = Anchor(kind=kind, path=path, location=path)
    return ParagraphRecord.from_leaves(
        anchor,
        [TextLeaf(leaf_id=f"{path}/r[{idx}]", text=text) for idx, text in enumerate(leaves)],
    )
