"""Shared fixtures: a scriptable in-memory renderer and PDF builders."""

import asyncio
import json
from typing import Dict, Iterable, List, Optional

import pytest

from pdf_review.config import PDFReviewConfig
from pdf_review.core.annotations import ChangeAction
from pdf_review.renderer.base import Renderer
from pdf_review.version.version_control import VersionController
from pdf_review.version.version_store import VersionStore

FAKE_HEADER = b"%PDF-1.7\n"


def encode_state(pages: Iterable[str], annotations: Iterable[dict] = ()) -> bytes:
    """Bytes a FakeRenderer exports for the given state."""
    state = {"pages": list(pages), "annotations": [dict(a) for a in annotations]}
    return FAKE_HEADER + json.dumps(state, sort_keys=True).encode()


def decode_state(content: bytes) -> dict:
    return json.loads(content[len(FAKE_HEADER):])


class FakeRenderer(Renderer):
    """
    In-memory renderer whose failures can be scripted per method.

    ``fail_on`` names methods that raise, ``hang_on`` names methods that
    never finish, and ``failing_pages`` lists pages whose text extraction
    raises.
    """

    def __init__(self, pages: Optional[List[str]] = None, annotations: Optional[List[dict]] = None):
        super().__init__()
        self.pages = list(pages if pages is not None else ["Hello world"])
        self.annotations: Dict[str, dict] = {a["id"]: dict(a) for a in annotations or []}
        self.fail_on = set()
        self.hang_on = set()
        self.failing_pages = set()
        self.loaded: List[bytes] = []

    async def _guard(self, name: str) -> None:
        if name in self.hang_on:
            await asyncio.sleep(3600)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    @property
    def total_page_count(self) -> int:
        return len(self.pages)

    async def export_binary_content(self) -> bytes:
        await self._guard("export_binary_content")
        return encode_state(self.pages, self.annotations.values())

    async def export_annotation_snapshot(self) -> List[dict]:
        await self._guard("export_annotation_snapshot")
        return [dict(a) for a in self.annotations.values()]

    async def export_page_text(self, page_index: int) -> str:
        await self._guard("export_page_text")
        if page_index in self.failing_pages:
            raise RuntimeError(f"page {page_index} is unreadable")
        return self.pages[page_index]

    async def list_annotations(self) -> List[dict]:
        await self._guard("list_annotations")
        return [dict(a) for a in self.annotations.values()]

    async def load_content(self, content: bytes) -> None:
        await self._guard("load_content")
        state = decode_state(content)
        self.pages = state["pages"]
        self.annotations = {a["id"]: a for a in state["annotations"]}
        self.loaded.append(content)

    # Simulated user edits

    def add_annotation(self, **fields) -> dict:
        self.annotations[fields["id"]] = fields
        self.emit(ChangeAction.CREATE, dict(fields))
        return fields

    def update_annotation(self, annotation_id: str, **fields) -> dict:
        annotation = self.annotations[annotation_id]
        annotation.update(fields)
        self.emit(ChangeAction.UPDATE, dict(annotation))
        return annotation

    def delete_annotation(self, annotation_id: str) -> None:
        annotation = self.annotations.pop(annotation_id)
        self.emit(ChangeAction.DELETE, dict(annotation))


def _pdf_string(text: str) -> str:
    return "(" + text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)") + ")"


def make_pdf(pages: List[str], annotations: Optional[Dict[int, List[str]]] = None) -> bytes:
    """
    Build a small, valid PDF with one line of Helvetica text per page.

    ``annotations`` maps a page index to raw annotation dictionaries, e.g.
    ``"<< /Type /Annot /Subtype /Text /Rect [0 0 10 10] >>"``.
    """
    annotations = annotations or {}
    objects: List[Optional[bytes]] = []

    def add(body: Optional[bytes]) -> int:
        objects.append(body)
        return len(objects)

    catalog = add(None)
    pages_obj = add(None)
    font = add(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    page_ids = []
    for index, text in enumerate(pages):
        stream = f"BT /F1 12 Tf 72 720 Td {_pdf_string(text)} Tj ET".encode("latin-1")
        content = add(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")
        annot_ids = [add(a.encode("latin-1")) for a in annotations.get(index, [])]
        annots = b""
        if annot_ids:
            annots = b" /Annots [" + b" ".join(b"%d 0 R" % i for i in annot_ids) + b"]"
        page_ids.append(add(
            b"<< /Type /Page /Parent %d 0 R /MediaBox [0 0 612 792] "
            b"/Resources << /Font << /F1 %d 0 R >> >> /Contents %d 0 R%s >>"
            % (pages_obj, font, content, annots)
        ))

    objects[catalog - 1] = b"<< /Type /Catalog /Pages %d 0 R >>" % pages_obj
    kids = b" ".join(b"%d 0 R" % p for p in page_ids)
    objects[pages_obj - 1] = b"<< /Type /Pages /Kids [%s] /Count %d >>" % (kids, len(page_ids))

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root %d 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1, catalog, xref
    )
    return bytes(out)


@pytest.fixture
def config() -> PDFReviewConfig:
    config = PDFReviewConfig()
    config.renderer.call_timeout = 0.2
    config.diff.compute_timeout = 5.0
    return config


@pytest.fixture
def store() -> VersionStore:
    return VersionStore()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer(pages=["Hello world", "Second page"])


@pytest.fixture
def controller(store, renderer, config) -> VersionController:
    return VersionController(store, renderer=renderer, config=config)


@pytest.fixture
def initial_content(renderer) -> bytes:
    return encode_state(renderer.pages, renderer.annotations.values())
