"""
Document session control: committing renderer state as new versions and
switching the renderer between stored versions.

One controller drives one document session. Annotation events from the
renderer flow through an event queue into the change tracker; a commit drains
that queue, captures the renderer's state and persists it as the next
numbered version.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from ..config import PDFReviewConfig
from ..core.annotations import AnnotationEvent
from ..core.document_model import Document, Version
from ..errors import InvalidStateError, ValidationError, VersionNotFoundError
from ..renderer.base import CapturedState, Renderer, RendererBridge
from ..renderer.pdf_renderer import looks_like_pdf
from .change_tracker import AnnotationChangeTracker, AnnotationEventQueue
from .diff_engine import DiffEngine, DiffReport
from .version_store import VersionStore

INITIAL_COMMIT_MESSAGE = "Initial upload"


class SessionState(Enum):
    """States of a document session."""
    VIEWING = "viewing"
    COMMITTING = "committing"
    SWITCH_CONFIRMING = "switch_confirming"


class SwitchStatus(Enum):
    """Outcome of a version switch request."""
    UNCHANGED = "unchanged"
    CONFIRMATION_REQUIRED = "confirmation_required"
    SWITCHED = "switched"


@dataclass(frozen=True)
class SwitchResult:
    """Result of ``request_switch``/``confirm_switch``."""

    status: SwitchStatus
    version: Version
    pending_count: int = 0


def generate_version_id(document_id: str, version_number: int, content_hash: str) -> str:
    """Short unique id for a new version."""
    content = f"{document_id}{version_number}{datetime.now().isoformat()}{content_hash}"
    return hashlib.sha256(content.encode()).hexdigest()[:12]


class VersionController:
    """
    Commit and switch protocol for one document session.

    Usage::

        controller = VersionController(store, config=config)
        controller.attach_renderer(renderer)
        await controller.open_document("report.pdf", content)
        ...
        await controller.commit("Reviewed section 2")
    """

    def __init__(
        self,
        store: VersionStore,
        tracker: Optional[AnnotationChangeTracker] = None,
        renderer: Optional[Renderer] = None,
        diff_engine: Optional[DiffEngine] = None,
        config: Optional[PDFReviewConfig] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.config = config or PDFReviewConfig()
        self.store = store
        self.tracker = tracker or AnnotationChangeTracker()
        self.diff_engine = diff_engine or DiffEngine(store, self.config)

        self.event_queue: Optional[AnnotationEventQueue] = None
        if self.config.features.get("event_queue", True):
            self.event_queue = AnnotationEventQueue(self.tracker)

        self.renderer: Optional[Renderer] = None
        self.bridge: Optional[RendererBridge] = None

        self.last_diff_report: Optional[DiffReport] = None

        self._state = SessionState.VIEWING
        self._document: Optional[Document] = None
        self._switch_target: Optional[Version] = None

        if renderer is not None:
            self.attach_renderer(renderer)

    # Accessors

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def document(self) -> Optional[Document]:
        return self._document

    @property
    def current_version(self) -> Optional[Version]:
        if self._document is None or self._document.current_version_id is None:
            return None
        return self.store.get_by_id(self._document.current_version_id)

    @property
    def pending_count(self) -> int:
        """Unsaved change count, including renderer events still queued."""
        self._apply_queued_events()
        return self.tracker.pending_count

    @property
    def switch_target(self) -> Optional[Version]:
        return self._switch_target

    def history(self) -> List[Version]:
        """Versions of the open document, oldest first."""
        if self._document is None:
            return []
        return self.store.list_by_document(self._document.id)

    def change_summary(self) -> Dict[str, int]:
        """Pending changes counted by action, as shown before a commit."""
        self._apply_queued_events()
        return self.tracker.change_summary()

    # Renderer wiring

    def attach_renderer(self, renderer: Renderer) -> None:
        """Use ``renderer`` for captures and subscribe to its annotation events."""
        if self.renderer is not None:
            self.renderer.remove_event_listener(self._on_renderer_event)
        self.renderer = renderer
        self.bridge = RendererBridge(renderer, self.config)
        renderer.add_event_listener(self._on_renderer_event)

    def _on_renderer_event(self, event: AnnotationEvent) -> None:
        if self.event_queue is not None:
            self.event_queue.publish(event)
        else:
            self.tracker.dispatch(event)

    def _apply_queued_events(self) -> None:
        if self.event_queue is not None:
            self.event_queue.apply_queued()

    async def sync_events(self) -> None:
        """Apply every renderer event published so far."""
        if self.event_queue is not None:
            await self.event_queue.drain()

    async def _resync_tracker(self) -> None:
        """Seed the tracker with the renderer's current annotations."""
        if self.bridge is None:
            self.tracker.resync([])
            return
        self.tracker.resync(await self.bridge.list_annotations())

    def _require_document(self) -> Document:
        if self._document is None:
            raise InvalidStateError("No document is open")
        return self._document

    # Documents

    def _validate_upload(self, content: bytes) -> None:
        if not content or not looks_like_pdf(content):
            raise ValidationError("Only PDF files can be uploaded")
        limit = self.config.storage.max_upload_bytes
        if len(content) > limit:
            raise ValidationError(
                f"File is {len(content)} bytes; the limit is {self.config.storage.max_upload_mb}MB"
            )

    async def open_document(self, name: str, content: bytes) -> Version:
        """
        Register a new document and store its first version.

        Args:
            name: Display name, usually the file name
            content: PDF bytes

        Returns:
            Version 1 of the new document
        """
        self._validate_upload(content)

        if self.bridge is not None:
            await self.bridge.load_content(content)
            captured = await self.bridge.capture()
            # The uploaded bytes are version 1, whatever the renderer re-exports
            captured = CapturedState(
                binary_content=content,
                annotation_snapshot=captured.annotation_snapshot,
                page_text_snapshot=captured.page_text_snapshot,
                page_count=captured.page_count,
                degraded_pages=captured.degraded_pages,
            )
        else:
            captured = CapturedState(
                binary_content=content,
                annotation_snapshot="[]",
                page_text_snapshot="[]",
                page_count=0,
            )

        document = self.store.create_document(name)
        version = self._build_version(document, 1, INITIAL_COMMIT_MESSAGE, captured)
        self.store.commit_version(version, captured.binary_content)

        await self.sync_events()
        self._document = document
        self._state = SessionState.VIEWING
        self._switch_target = None
        self.last_diff_report = None
        self.tracker.reset()
        await self._resync_tracker()
        if self.event_queue is not None:
            self.event_queue.start()

        self.logger.info(f"Opened {name} as document {document.id}")
        return version

    async def load_document(self, document_id: str) -> Version:
        """Start a session on an existing document at its current version."""
        document = self.store.get_document(document_id)
        if document.current_version_id is None:
            raise VersionNotFoundError(f"{document_id} has no versions")
        version = self.store.get_by_id(document.current_version_id)

        if self.bridge is not None:
            await self.bridge.load_content(self.store.get_binary_content(version.id))

        await self.sync_events()
        self._document = document
        self._state = SessionState.VIEWING
        self._switch_target = None
        self.last_diff_report = None
        self.tracker.reset()
        await self._resync_tracker()
        if self.event_queue is not None:
            self.event_queue.start()

        self.logger.debug(f"Loaded document {document_id} at {version.label}")
        return version

    async def reconcile_content(self, content: bytes) -> int:
        """
        Load edited content into the renderer and record its annotation
        differences as pending changes.

        For renderers that cannot emit live annotation events.

        Returns:
            Number of change records produced
        """
        self._require_document()
        if self.bridge is None:
            raise ValidationError("No renderer attached")
        await self.bridge.load_content(content)
        await self.sync_events()
        return self.tracker.reconcile(await self.bridge.list_annotations())

    # Commit

    def _build_version(
        self,
        document: Document,
        version_number: int,
        message: str,
        captured: CapturedState,
    ) -> Version:
        content_hash = hashlib.sha256(captured.binary_content).hexdigest()
        return Version(
            id=generate_version_id(document.id, version_number, content_hash),
            document_id=document.id,
            version_number=version_number,
            message=message,
            annotation_snapshot=captured.annotation_snapshot,
            page_text_snapshot=captured.page_text_snapshot,
            content_hash=content_hash,
            content_size=len(captured.binary_content),
        )

    async def commit(self, message: str) -> Version:
        """
        Persist the renderer's current state as the next version.

        Pending changes are cleared and the current version moves only after
        the version is stored. On failure nothing changes and the error is
        re-raised.

        Args:
            message: Commit message; must not be blank

        Returns:
            The created Version
        """
        message = (message or "").strip()
        if not message:
            raise ValidationError("Commit message must not be empty")
        if self.bridge is None:
            raise ValidationError("No renderer attached")
        if self._state is not SessionState.VIEWING:
            raise InvalidStateError(f"Cannot commit while {self._state.value}")
        document = self._require_document()

        self._state = SessionState.COMMITTING
        try:
            await self.sync_events()
            captured = await self.bridge.capture()
            if captured.degraded_pages:
                pages = ", ".join(str(i + 1) for i in captured.degraded_pages)
                self.logger.warning(f"Committing with empty text for page(s) {pages}")

            version_number = self.store.next_version_number(document.id)
            version = self._build_version(document, version_number, message, captured)
            self.store.commit_version(version, captured.binary_content)
        except Exception as e:
            self.logger.error(f"Commit failed: {e}", exc_info=True)
            raise
        finally:
            self._state = SessionState.VIEWING

        self.tracker.clear()
        self.logger.info(f"Committed {version.label}: {message}")
        return version

    # Switching

    async def request_switch(self, version_id: str) -> SwitchResult:
        """
        Ask to show another version.

        With pending changes the session waits for ``confirm_switch`` or
        ``cancel_switch``; otherwise the switch happens at once.
        """
        document = self._require_document()
        if self._state is not SessionState.VIEWING:
            raise InvalidStateError(f"Cannot switch versions while {self._state.value}")

        target = self.store.get_by_id(version_id)
        if target.document_id != document.id:
            raise VersionNotFoundError(version_id)

        if target.id == document.current_version_id:
            return SwitchResult(SwitchStatus.UNCHANGED, target)

        await self.sync_events()
        if self.tracker.has_unsaved_changes:
            self._state = SessionState.SWITCH_CONFIRMING
            self._switch_target = target
            return SwitchResult(
                SwitchStatus.CONFIRMATION_REQUIRED, target, pending_count=self.tracker.pending_count
            )

        await self._switch_to(target)
        return SwitchResult(SwitchStatus.SWITCHED, target)

    async def confirm_switch(self) -> SwitchResult:
        """Discard pending changes and complete the requested switch."""
        if self._state is not SessionState.SWITCH_CONFIRMING or self._switch_target is None:
            raise InvalidStateError("No version switch is awaiting confirmation")

        target = self._switch_target
        discarded = self.tracker.pending_count
        self.tracker.clear()
        self.logger.info(f"Discarded {discarded} pending changes")

        self._state = SessionState.VIEWING
        self._switch_target = None
        await self._switch_to(target)
        return SwitchResult(SwitchStatus.SWITCHED, target)

    def cancel_switch(self) -> None:
        """Abandon a pending switch request."""
        self._state = SessionState.VIEWING
        self._switch_target = None

    async def _switch_to(self, target: Version) -> None:
        document = self._require_document()
        content = self.store.get_binary_content(target.id)
        if self.bridge is not None:
            await self.bridge.load_content(content)

        self.store.set_current_version(document.id, target.id)
        self.last_diff_report = None
        await self._resync_tracker()
        self.logger.info(f"Switched to {target.label}")

    # Comparison

    async def compare(self, base_version_id: str, compare_version_id: str) -> DiffReport:
        """Diff two versions and keep the report as ``last_diff_report``."""
        report = await self.diff_engine.compute_full_diff(base_version_id, compare_version_id)
        self.last_diff_report = report
        return report

    async def close(self) -> None:
        """Tear down the session."""
        if self.event_queue is not None:
            await self.event_queue.stop()
        if self.renderer is not None:
            self.renderer.remove_event_listener(self._on_renderer_event)
        self.tracker.reset()
        self._document = None
        self._switch_target = None
        self._state = SessionState.VIEWING
        self.last_diff_report = None
