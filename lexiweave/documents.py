"""Paragraph extraction for supported document types."""

from __future__ import annotations

import importlib
import os
import pathlib
from abc import ABC, abstractmethod
from typing import Any, Iterable, Iterator, List, Tuple

from .errors import LexiweaveError, UnsupportedFileTypeError
from .structures import Anchor, ParagraphRecord, TextLeaf


def _paragraph_record(
    runs,
    *,
    kind: str,
    path: str,
    location: str,
    node: Any,
) -> List[ParagraphRecord]:
    """Turn the runs of one paragraph into a record, skipping empty paragraphs."""

    leaves: List[TextLeaf] = []
    for index, run in enumerate(runs):
        if run.text:
            leaves.append(TextLeaf(f"{path}/r[{index}]", run.text, run))

    if not leaves or not "".join(leaf.text for leaf in leaves).strip():
        return []

    anchor = Anchor(kind=kind, path=path, location=location, node=node)
    return [ParagraphRecord.from_leaves(anchor, leaves)]


def _load_library(module: str, attribute: str, package: str) -> Any:
    try:
        return getattr(importlib.import_module(module), attribute)
    except ImportError as exc:  # pragma: no cover - import guard
        raise LexiweaveError(
            f"{package} is required to read this document: pip install {package}"
        ) from exc


class BaseDocumentHandler(ABC):
    """Reads one document and yields its paragraphs in reading order."""

    document_type = "document"
    suffixes: Tuple[str, ...] = ()

    def __init__(self, source_path: pathlib.Path):
        self.source_path = source_path

    @abstractmethod
    def iter_paragraphs(self) -> Iterator[ParagraphRecord]:
        """Yield paragraph records in document order."""

    def paragraphs(self) -> List[ParagraphRecord]:
        return list(self.iter_paragraphs())


class DocxDocumentHandler(BaseDocumentHandler):
    """Extracts paragraphs from Word documents."""

    document_type = "docx"
    suffixes = (".docx",)

    def __init__(self, source_path: pathlib.Path):
        super().__init__(source_path)
        Document = _load_library("docx", "Document", "python-docx")
        self.document = Document(str(source_path))

    def iter_paragraphs(self) -> Iterator[ParagraphRecord]:
        yield from self._extract_body()
        yield from self._extract_tables(self.document.tables, base="body", location="Table")
        yield from self._extract_headers_and_footers()

    def _extract_body(self) -> Iterator[ParagraphRecord]:
        for p_idx, paragraph in enumerate(self.document.paragraphs):
            yield from _paragraph_record(
                paragraph.runs,
                kind="p",
                path=f"body/p[{p_idx}]",
                location=f"Body paragraph {p_idx + 1}",
                node=paragraph,
            )

    def _extract_tables(
        self,
        tables,
        *,
        base: str,
        location: str,
    ) -> Iterator[ParagraphRecord]:
        processed_cells = set()
        for t_idx, table in enumerate(tables):
            for r_idx, row in enumerate(table.rows):
                for c_idx, cell in enumerate(row.cells):
                    cell_key = id(cell._tc)  # type: ignore[attr-defined]
                    if cell_key in processed_cells:
                        continue
                    processed_cells.add(cell_key)
                    cell_path = f"{base}/table[{t_idx}]/row[{r_idx}]/cell[{c_idx}]"
                    cell_location = (
                        f"{location} {t_idx + 1}, row {r_idx + 1}, column {c_idx + 1}"
                    )
                    for p_idx, paragraph in enumerate(cell.paragraphs):
                        yield from _paragraph_record(
                            paragraph.runs,
                            kind="cell",
                            path=f"{cell_path}/p[{p_idx}]",
                            location=cell_location,
                            node=paragraph,
                        )

    def _extract_headers_and_footers(self) -> Iterator[ParagraphRecord]:
        for s_idx, section in enumerate(self.document.sections):
            for name, container in (("header", section.header), ("footer", section.footer)):
                base = f"section[{s_idx}]/{name}"
                location = f"Section {s_idx + 1} {name}"
                for p_idx, paragraph in enumerate(container.paragraphs):
                    yield from _paragraph_record(
                        paragraph.runs,
                        kind=name,
                        path=f"{base}/p[{p_idx}]",
                        location=location,
                        node=paragraph,
                    )
                yield from self._extract_tables(
                    container.tables,
                    base=base,
                    location=f"{location} table",
                )


class PptxDocumentHandler(BaseDocumentHandler):
    """Extracts paragraphs from PowerPoint presentations."""

    document_type = "pptx"
    suffixes = (".pptx",)

    def __init__(self, source_path: pathlib.Path):
        super().__init__(source_path)
        Presentation = _load_library("pptx", "Presentation", "python-pptx")
        self.presentation = Presentation(str(source_path))

    def iter_paragraphs(self) -> Iterator[ParagraphRecord]:
        yield from self._extract_slide_content()
        yield from self._extract_notes()

    def _extract_slide_content(self) -> Iterator[ParagraphRecord]:
        for slide_idx, slide in enumerate(self.presentation.slides):
            for shape_idx, shape in enumerate(slide.shapes):
                base = f"slide[{slide_idx}]/shape[{shape_idx}]"
                location = f"Slide {slide_idx + 1}, shape {shape_idx + 1}"
                if getattr(shape, "has_text_frame", False):
                    yield from self._extract_text_frame(
                        shape.text_frame,
                        kind="shape",
                        base=base,
                        location=location,
                    )
                if getattr(shape, "has_table", False):
                    yield from self._extract_table(
                        shape.table,
                        base=f"{base}/table",
                        base_location=location,
                    )

    def _extract_notes(self) -> Iterator[ParagraphRecord]:
        for slide_idx, slide in enumerate(self.presentation.slides):
            if not getattr(slide, "has_notes_slide", False):
                continue
            text_frame = slide.notes_slide.notes_text_frame
            if text_frame is not None:
                yield from self._extract_text_frame(
                    text_frame,
                    kind="notes",
                    base=f"slide[{slide_idx}]/notes",
                    location=f"Slide {slide_idx + 1} notes",
                )

    def _extract_text_frame(
        self,
        text_frame,
        *,
        kind: str,
        base: str,
        location: str,
    ) -> Iterator[ParagraphRecord]:
        for p_idx, paragraph in enumerate(text_frame.paragraphs):
            yield from _paragraph_record(
                paragraph.runs,
                kind=kind,
                path=f"{base}/p[{p_idx}]",
                location=location,
                node=paragraph,
            )

    def _extract_table(
        self,
        table,
        *,
        base: str,
        base_location: str,
    ) -> Iterator[ParagraphRecord]:
        for r_idx, row in enumerate(table.rows):
            for c_idx, cell in enumerate(row.cells):
                if cell.text_frame is None:
                    continue
                yield from self._extract_text_frame(
                    cell.text_frame,
                    kind="cell",
                    base=f"{base}/row[{r_idx}]/cell[{c_idx}]",
                    location=f"{base_location}, row {r_idx + 1}, column {c_idx + 1}",
                )


class TextDocumentHandler(BaseDocumentHandler):
    """Extracts blank-line separated blocks from plain text and Markdown."""

    document_type = "text"
    suffixes = (".txt", ".md", ".markdown")

    def __init__(self, source_path: pathlib.Path, *, encoding: str = "utf-8"):
        super().__init__(source_path)
        self.text = pathlib.Path(source_path).read_text(encoding=encoding)

    @classmethod
    def from_string(cls, text: str, *, name: str = "<string>") -> "TextDocumentHandler":
        handler = cls.__new__(cls)
        handler.source_path = pathlib.Path(name)
        handler.text = text
        return handler

    def iter_paragraphs(self) -> Iterator[ParagraphRecord]:
        block: List[str] = []
        b_idx = 0
        for line in self.text.splitlines(keepends=True):
            if line.strip():
                block.append(line)
                continue
            if block:
                yield self._build_block(block, b_idx)
                b_idx += 1
                block = []
        if block:
            yield self._build_block(block, b_idx)

    def _build_block(self, lines: List[str], b_idx: int) -> ParagraphRecord:
        # The terminator of the block's last line belongs to the separator.
        lines = lines[:-1] + [lines[-1].rstrip("\r\n")]
        path = f"block[{b_idx}]"
        leaves = [
            TextLeaf(leaf_id=f"{path}/line[{l_idx}]", text=line)
            for l_idx, line in enumerate(lines)
            if line
        ]
        anchor = Anchor(kind="block", path=path, location=f"Block {b_idx + 1}")
        return ParagraphRecord.from_leaves(anchor, leaves)


HANDLERS: Tuple[type, ...] = (DocxDocumentHandler, PptxDocumentHandler, TextDocumentHandler)


def detect_handler(path: pathlib.Path) -> Tuple[str, BaseDocumentHandler]:
    """Open ``path`` with the handler registered for its suffix."""

    path = pathlib.Path(path)
    suffix = path.suffix.lower()
    for handler_cls in HANDLERS:
        if suffix in handler_cls.suffixes:
            return handler_cls.document_type, handler_cls(path)
    raise UnsupportedFileTypeError(
        "Unsupported file type. Use .docx, .pptx, .txt or .md."
    )


def collect_paragraphs(root: Any) -> List[ParagraphRecord]:
    """Return the paragraph records reachable from a content root.

    ``root`` may be a document handler, a path to a supported file, or an
    iterable of already extracted paragraph records.
    """

    if root is None:
        return []
    if isinstance(root, BaseDocumentHandler):
        return root.paragraphs()
    if isinstance(root, (str, os.PathLike)):
        _, handler = detect_handler(pathlib.Path(root))
        return handler.paragraphs()
    if isinstance(root, ParagraphRecord):
        return [root]
    if isinstance(root, Iterable):
        return [item for item in root if isinstance(item, ParagraphRecord)]
    return []
