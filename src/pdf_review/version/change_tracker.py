"""
Annotation change tracking.

The tracker mirrors the annotations currently present in the renderer and
keeps an append-only log of create/update/delete events since the last
commit. Renderer events reach it through a single-consumer queue so they are
applied strictly in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from ..core.annotations import (
    AnnotationEvent,
    AnnotationType,
    ChangeAction,
    RawAnnotation,
    RawInput,
    TrackedAnnotation,
)


@dataclass(frozen=True)
class AnnotationChangeRecord:
    """One entry of the pending change log."""

    annotation_id: str
    action: ChangeAction
    type: AnnotationType
    page_index: int
    contents: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "annotation_id": self.annotation_id,
            "action": self.action.value,
            "type": self.type.value,
            "page_index": self.page_index,
            "contents": self.contents,
            "timestamp": self.timestamp.isoformat(),
        }


class AnnotationChangeTracker:
    """Live annotation mirror plus the log of changes since the last commit."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.annotations: List[TrackedAnnotation] = []
        self.pending_changes: List[AnnotationChangeRecord] = []

    @property
    def pending_count(self) -> int:
        """Number of unsaved changes."""
        return len(self.pending_changes)

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self.pending_changes)

    def find_by_external_id(self, external_id: str) -> Optional[TrackedAnnotation]:
        for annotation in self.annotations:
            if annotation.external_id == external_id:
                return annotation
        return None

    def _record(self, action: ChangeAction, annotation: TrackedAnnotation) -> AnnotationChangeRecord:
        record = AnnotationChangeRecord(
            annotation_id=annotation.id,
            action=action,
            type=annotation.type,
            page_index=annotation.page_index,
            contents=annotation.contents,
        )
        self.pending_changes.append(record)
        return record

    def on_annotation_created(self, raw: RawInput) -> TrackedAnnotation:
        """
        Track a newly created annotation.

        A create for an id that is already tracked is applied as an update so
        tracked ids stay unique.
        """
        raw = RawAnnotation.coerce(raw)
        if self.find_by_external_id(raw.id) is not None:
            self.logger.warning(f"Create for already tracked annotation {raw.id}; applying as update")
            return self.on_annotation_updated(raw)

        annotation = TrackedAnnotation.from_raw(raw)
        self.annotations.append(annotation)
        self._record(ChangeAction.CREATE, annotation)
        self.logger.debug(f"Tracked new {annotation.type.value} annotation {annotation.external_id}")
        return annotation

    def on_annotation_updated(self, raw: RawInput) -> Optional[TrackedAnnotation]:
        """
        Apply an update event.

        Updates for annotations the tracker never saw (e.g. ones that existed
        before tracking began) are ignored.
        """
        raw = RawAnnotation.coerce(raw)
        annotation = self.find_by_external_id(raw.id)
        if annotation is None:
            self.logger.warning(f"Ignoring update for untracked annotation {raw.id}")
            return None

        annotation.apply(raw)
        self._record(ChangeAction.UPDATE, annotation)
        return annotation

    def on_annotation_deleted(self, raw: RawInput) -> Optional[TrackedAnnotation]:
        """Apply a delete event, logging the annotation's last known values."""
        raw = RawAnnotation.coerce(raw)
        annotation = self.find_by_external_id(raw.id)
        if annotation is None:
            self.logger.warning(f"Ignoring delete for untracked annotation {raw.id}")
            return None

        self.annotations.remove(annotation)
        self._record(ChangeAction.DELETE, annotation)
        return annotation

    def dispatch(self, event: AnnotationEvent) -> Optional[TrackedAnnotation]:
        """Apply a single renderer event."""
        if event.action is ChangeAction.CREATE:
            return self.on_annotation_created(event.raw)
        if event.action is ChangeAction.UPDATE:
            return self.on_annotation_updated(event.raw)
        return self.on_annotation_deleted(event.raw)

    def resync(self, raw_annotations: Iterable[RawInput]) -> None:
        """Replace the live annotations wholesale without recording changes."""
        self.annotations = [TrackedAnnotation.from_raw(raw) for raw in raw_annotations]
        self.logger.debug(f"Resynced {len(self.annotations)} annotations")

    def reconcile(self, raw_annotations: Iterable[RawInput]) -> int:
        """
        Bring the tracker in line with a full annotation listing.

        For renderers that cannot emit live events: differences against the
        live annotations are replayed as create, update and delete events.
        Returns the number of change records produced.
        """
        before = self.pending_count
        incoming = [RawAnnotation.coerce(raw) for raw in raw_annotations]
        incoming_ids = {raw.id for raw in incoming}

        for raw in incoming:
            existing = self.find_by_external_id(raw.id)
            if existing is None:
                self.on_annotation_created(raw)
                continue

            candidate = TrackedAnnotation.from_raw(raw)
            if (existing.contents, existing.color, existing.page_index) != (
                candidate.contents, candidate.color, candidate.page_index
            ):
                self.on_annotation_updated(raw)

        for annotation in list(self.annotations):
            if annotation.external_id not in incoming_ids:
                self.on_annotation_deleted({"id": annotation.external_id})

        return self.pending_count - before

    def clear(self) -> None:
        """Forget pending changes; the live annotations are untouched."""
        self.pending_changes = []

    def reset(self) -> None:
        """Forget everything (document session teardown)."""
        self.annotations = []
        self.pending_changes = []

    def change_summary(self) -> Dict[str, int]:
        """Count pending changes by action."""
        summary = {action.value: 0 for action in ChangeAction}
        for change in self.pending_changes:
            summary[change.action.value] += 1
        return summary


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class AnnotationEventQueue:
    """
    Single-consumer queue feeding renderer events to a tracker.

    ``publish`` can be called from renderer callbacks; one consumer task
    applies events strictly in the order they were published.
    """

    def __init__(self, tracker: AnnotationChangeTracker):
        self.tracker = tracker
        self.logger = logging.getLogger(__name__)
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def _ensure_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def publish(self, event: AnnotationEvent) -> None:
        """Enqueue an event without blocking; starts the consumer when a loop is running."""
        self._ensure_queue().put_nowait(event)
        if not self.is_running and _has_running_loop():
            self.start()

    def apply_queued(self) -> int:
        """
        Apply every queued event now, in publish order.

        The consumer applies each event synchronously after taking it off the
        queue, so whatever is still queued comes strictly after everything it
        has applied. Returns the number of events applied.
        """
        if self._queue is None:
            return 0
        applied = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return applied
            try:
                self._apply(event)
            finally:
                self._queue.task_done()
            applied += 1

    def _apply(self, event: AnnotationEvent) -> None:
        try:
            self.tracker.dispatch(event)
        except Exception as e:
            self.logger.error(f"Failed to apply {event.action.value} event: {e}", exc_info=True)

    def start(self) -> None:
        """Start the consumer task on the running event loop."""
        if self.is_running:
            return
        self._ensure_queue()
        self._consumer = asyncio.get_running_loop().create_task(self._consume())

    async def _consume(self) -> None:
        queue = self._ensure_queue()
        while True:
            event = await queue.get()
            try:
                self._apply(event)
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every published event has been applied."""
        if self._queue is None:
            return
        if not self.is_running:
            self.start()
        await self._queue.join()

    async def stop(self) -> None:
        """Stop the consumer task."""
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None
