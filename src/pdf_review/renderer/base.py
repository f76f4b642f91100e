"""
Renderer contract and the bridge the versioning core uses to talk to it.

The renderer is the interactive viewer that owns the live document. The core
only needs it to export its state, reload stored content, and report
annotation events.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Mapping, Optional, TypeVar, Union

from ..config import PDFReviewConfig, RendererConfig
from ..core.annotations import AnnotationEvent, ChangeAction, RawAnnotation
from ..core.document_model import (
    AnnotationEntry,
    PageText,
    serialize_annotation_snapshot,
    serialize_page_text_snapshot,
)
from ..errors import ExtractionError, RendererTimeoutError

T = TypeVar("T")

AnnotationListener = Callable[[AnnotationEvent], None]


class Renderer(ABC):
    """Interface a document renderer must provide."""

    def __init__(self):
        self._listeners: List[AnnotationListener] = []

    @property
    @abstractmethod
    def total_page_count(self) -> int:
        """Number of pages in the loaded document."""

    @abstractmethod
    async def export_binary_content(self) -> bytes:
        """Full rendered document bytes, annotations included."""

    @abstractmethod
    async def export_annotation_snapshot(self) -> List[Union[AnnotationEntry, Mapping[str, Any]]]:
        """Authoritative, normalized list of the document's annotations."""

    @abstractmethod
    async def export_page_text(self, page_index: int) -> str:
        """Extracted text of one page."""

    @abstractmethod
    async def list_annotations(self) -> List[Union[RawAnnotation, Mapping[str, Any]]]:
        """Raw annotations currently present, used to seed the tracker."""

    @abstractmethod
    async def load_content(self, content: bytes) -> None:
        """Replace the displayed document with stored content."""

    def add_event_listener(self, listener: AnnotationListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_event_listener(self, listener: AnnotationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, action: ChangeAction, raw: Union[RawAnnotation, Mapping[str, Any]]) -> None:
        """Notify listeners of an annotation event, synchronously."""
        event = AnnotationEvent(action=action, raw=raw)
        for listener in list(self._listeners):
            listener(event)


@dataclass(frozen=True)
class CapturedState:
    """Renderer state captured for a commit."""

    binary_content: bytes
    annotation_snapshot: str
    page_text_snapshot: str
    page_count: int
    degraded_pages: tuple = ()


class RendererBridge:
    """
    Timeout-bounded access to a renderer.

    A hung renderer surfaces as RendererTimeoutError instead of blocking the
    caller forever.
    """

    def __init__(self, renderer: Renderer, config: Optional[PDFReviewConfig] = None):
        self.renderer = renderer
        self.config: RendererConfig = config.renderer if config else RendererConfig()
        self.logger = logging.getLogger(__name__)

    async def _call(self, description: str, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(factory(), self.config.call_timeout)
        except asyncio.TimeoutError:
            raise RendererTimeoutError(
                f"Renderer did not finish {description} within {self.config.call_timeout}s"
            ) from None

    async def export_binary_content(self) -> bytes:
        try:
            return await self._call("exporting content", self.renderer.export_binary_content)
        except RendererTimeoutError:
            raise
        except Exception as e:
            raise ExtractionError(f"Content export failed: {e}") from e

    async def export_annotation_snapshot(self) -> str:
        try:
            entries = await self._call("exporting annotations", self.renderer.export_annotation_snapshot)
        except RendererTimeoutError:
            raise
        except Exception as e:
            raise ExtractionError(f"Annotation export failed: {e}") from e
        return serialize_annotation_snapshot(entries)

    async def export_page_text(self, page_index: int) -> str:
        try:
            return await self._call(
                f"extracting text of page {page_index + 1}",
                lambda: self.renderer.export_page_text(page_index),
            )
        except Exception as e:
            raise ExtractionError(f"Text extraction failed for page {page_index + 1}: {e}", page_index) from e

    async def capture_page_texts(self) -> tuple:
        """
        Extract text page by page, in page order.

        A page that fails degrades to empty text; later pages are still
        extracted.
        """
        pages: List[PageText] = []
        degraded: List[int] = []
        for page_index in range(self.renderer.total_page_count):
            try:
                text = await self.export_page_text(page_index)
            except ExtractionError as e:
                self.logger.warning(f"{e}; storing empty text for this page")
                degraded.append(page_index)
                text = ""
            pages.append(PageText(page_index=page_index, text=text or ""))
        return pages, tuple(degraded)

    async def capture(self) -> CapturedState:
        """Capture content, annotations and page text, in that order."""
        binary_content = await self.export_binary_content()
        annotation_snapshot = await self.export_annotation_snapshot()
        pages, degraded = await self.capture_page_texts()
        return CapturedState(
            binary_content=binary_content,
            annotation_snapshot=annotation_snapshot,
            page_text_snapshot=serialize_page_text_snapshot(pages),
            page_count=len(pages),
            degraded_pages=degraded,
        )

    async def list_annotations(self) -> list:
        return await self._call("listing annotations", self.renderer.list_annotations)

    async def load_content(self, content: bytes) -> None:
        await self._call("loading content", lambda: self.renderer.load_content(content))
