"""
Renderer over a PDF file, backed by pypdf.

Used where no interactive viewer is attached (the command-line interface):
annotations are read from each page's ``/Annots`` array and page text comes
from pypdf's text extraction. Such a renderer never emits live events;
changes are found by reconciling its annotation listing with the tracker.
"""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..core.annotations import RawAnnotation, canonical_type
from ..core.document_model import AnnotationEntry
from ..errors import ExtractionError, ValidationError
from .base import Renderer

PDF_MAGIC = b"%PDF-"

# Subtypes that are structural rather than review annotations
IGNORED_SUBTYPES = {"Link", "Widget", "Popup"}


def looks_like_pdf(content: bytes) -> bool:
    """Check for the PDF header within the first kilobyte."""
    return PDF_MAGIC in content[:1024]


def _color_to_hex(value: Any) -> Optional[str]:
    """Convert a PDF /C color array to #rrggbb."""
    try:
        components = [float(c) for c in value]
    except (TypeError, ValueError):
        return None

    if len(components) == 1:
        components = components * 3
    elif len(components) == 4:
        # CMYK
        c, m, y, k = components
        components = [(1 - c) * (1 - k), (1 - m) * (1 - k), (1 - y) * (1 - k)]
    if len(components) != 3:
        return None

    return "#" + "".join(f"{max(0, min(255, round(c * 255))):02x}" for c in components)


def _text_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class PdfFileRenderer(Renderer):
    """Renderer reading a PDF from bytes."""

    def __init__(self, content: bytes):
        super().__init__()
        self.logger = logging.getLogger(__name__)
        self._content = b""
        self._reader: Optional[PdfReader] = None
        self._load(content)

    @classmethod
    def from_path(cls, path: Path) -> PdfFileRenderer:
        path = Path(path)
        if not path.exists():
            raise ValidationError(f"File not found: {path}")
        return cls(path.read_bytes())

    def _load(self, content: bytes) -> None:
        if not looks_like_pdf(content):
            raise ValidationError("Content is not a PDF document")
        try:
            reader = PdfReader(BytesIO(content))
            # Touch the page tree so structural damage shows up here
            len(reader.pages)
        except (PdfReadError, ValueError, KeyError) as e:
            raise ValidationError(f"Could not read PDF: {e}") from e
        self._content = bytes(content)
        self._reader = reader

    @property
    def reader(self) -> PdfReader:
        assert self._reader is not None
        return self._reader

    @property
    def total_page_count(self) -> int:
        return len(self.reader.pages)

    async def export_binary_content(self) -> bytes:
        return self._content

    async def export_page_text(self, page_index: int) -> str:
        if not 0 <= page_index < self.total_page_count:
            raise ExtractionError(f"Page index out of range: {page_index}", page_index)
        try:
            return self.reader.pages[page_index].extract_text() or ""
        except Exception as e:
            raise ExtractionError(f"pypdf could not extract page {page_index + 1}: {e}", page_index) from e

    def _read_annotations(self) -> List[Dict[str, Any]]:
        """Collect review annotations from every page."""
        annotations = []
        for page_index, page in enumerate(self.reader.pages):
            annots = page.get("/Annots")
            if not annots:
                continue
            for position, ref in enumerate(annots.get_object()):
                annot = ref.get_object()
                subtype = str(annot.get("/Subtype", "")).lstrip("/")
                if subtype in IGNORED_SUBTYPES:
                    continue

                name = _text_value(annot.get("/NM"))
                record: Dict[str, Any] = {
                    "id": name or f"p{page_index}-a{position}",
                    "type": subtype or "unknown",
                    "pageIndex": page_index,
                }
                contents = _text_value(annot.get("/Contents"))
                if contents is not None:
                    record["contents"] = contents
                color = _color_to_hex(annot.get("/C")) if annot.get("/C") is not None else None
                if color is not None:
                    record["color"] = color
                rect = annot.get("/Rect")
                if rect is not None:
                    try:
                        left, bottom, right, top = [float(v) for v in rect]
                        record["rect"] = {
                            "left": left,
                            "top": top,
                            "width": right - left,
                            "height": top - bottom,
                        }
                    except (TypeError, ValueError):
                        self.logger.debug(f"Ignoring malformed /Rect on page {page_index + 1}")
                annotations.append(record)
        return annotations

    async def list_annotations(self) -> List[RawAnnotation]:
        return [RawAnnotation.model_validate(record) for record in self._read_annotations()]

    async def export_annotation_snapshot(self) -> List[AnnotationEntry]:
        entries = []
        for record in self._read_annotations():
            entries.append(AnnotationEntry(
                id=record["id"],
                type=canonical_type(record["type"]).value,
                page_index=record["pageIndex"],
                contents=record.get("contents"),
                color=record.get("color"),
                bounding_box=record.get("rect"),
            ))
        return entries

    async def load_content(self, content: bytes) -> None:
        self._load(content)
        self.logger.debug(f"Loaded {len(content)} bytes ({self.total_page_count} pages)")
