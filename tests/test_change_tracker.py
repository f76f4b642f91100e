"""Tests for annotation change tracking and the event queue."""

import pytest
from pydantic import ValidationError

from pdf_review.core.annotations import (
    AnnotationEvent,
    AnnotationType,
    ChangeAction,
    FreeTextPayload,
    HighlightPayload,
    NotePayload,
    RawAnnotation,
    TextEditPayload,
    UnmappedPayload,
    canonical_type,
    map_raw_annotation,
    parse_payload,
)
from pdf_review.version.change_tracker import AnnotationChangeTracker, AnnotationEventQueue


@pytest.fixture
def tracker():
    return AnnotationChangeTracker()


# ── Type mapping ──────────────────────────────────────────────────────────────


class TestTypeMapping:
    def test_known_renderer_types(self):
        assert canonical_type("pspdfkit/markup/highlight") is AnnotationType.HIGHLIGHT
        assert canonical_type("/Text") is AnnotationType.NOTE
        assert canonical_type("StrikeOut") is AnnotationType.TEXT_EDIT
        assert canonical_type("Redact") is AnnotationType.REDACTION

    def test_unknown_type_falls_back_to_freetext(self):
        assert canonical_type("pspdfkit/shape/ellipse") is AnnotationType.FREETEXT

    def test_payload_per_kind(self):
        assert isinstance(map_raw_annotation({"id": "a", "type": "highlight", "color": "#ff0"}), HighlightPayload)
        note = map_raw_annotation({"id": "a", "type": "note", "contents": "hi"})
        assert isinstance(note, NotePayload) and note.contents == "hi"
        assert isinstance(map_raw_annotation({"id": "a", "type": "freetext"}), FreeTextPayload)

    def test_unmapped_payload_keeps_raw_type(self):
        payload = map_raw_annotation({"id": "a", "type": "Ink", "text": "scribble"})
        assert isinstance(payload, UnmappedPayload)
        assert payload.raw_type == "Ink"
        assert payload.annotation_type is AnnotationType.FREETEXT
        assert payload.contents == "scribble"

    def test_serialized_payload_selects_variant_by_kind(self):
        edit = parse_payload({"kind": "textEdit", "contents": "typo"})
        assert isinstance(edit, TextEditPayload)
        assert edit.contents == "typo"
        assert isinstance(parse_payload({"kind": "unmapped", "raw_type": "Ink"}), UnmappedPayload)

    def test_serialized_payload_with_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_payload({"kind": "stamp"})

    def test_non_integer_page_index_becomes_zero(self):
        assert RawAnnotation.coerce({"id": "a", "pageIndex": "3"}).page_index == 0


# ── Tracker ───────────────────────────────────────────────────────────────────


class TestTracker:
    def test_create_records_change(self, tracker):
        annotation = tracker.on_annotation_created({"id": "a1", "type": "highlight", "pageIndex": 2})
        assert annotation.id == "trk-a1"
        assert annotation.type is AnnotationType.HIGHLIGHT
        assert tracker.pending_count == 1
        record = tracker.pending_changes[0]
        assert record.action is ChangeAction.CREATE
        assert record.page_index == 2

    def test_update_applies_fields(self, tracker):
        tracker.on_annotation_created({"id": "a1", "type": "note", "contents": "old"})
        tracker.on_annotation_updated({"id": "a1", "type": "note", "contents": "new"})
        assert tracker.find_by_external_id("a1").contents == "new"
        assert [c.action for c in tracker.pending_changes] == [ChangeAction.CREATE, ChangeAction.UPDATE]
        assert tracker.pending_changes[1].contents == "new"

    def test_delete_records_last_known_values(self, tracker):
        tracker.on_annotation_created({"id": "a1", "type": "note", "contents": "keep me", "pageIndex": 4})
        tracker.on_annotation_deleted({"id": "a1"})
        assert tracker.annotations == []
        record = tracker.pending_changes[-1]
        assert record.action is ChangeAction.DELETE
        assert record.contents == "keep me"
        assert record.page_index == 4

    def test_repeated_create_is_applied_as_update(self, tracker, caplog):
        tracker.resync([{"id": "a1", "type": "note", "contents": "old"}])
        tracker.on_annotation_created({"id": "a1", "type": "note", "contents": "new"})

        assert [a.id for a in tracker.annotations] == ["trk-a1"]
        assert tracker.find_by_external_id("a1").contents == "new"
        assert [c.action for c in tracker.pending_changes] == [ChangeAction.UPDATE]
        assert "already tracked annotation a1" in caplog.text

    def test_unknown_update_and_delete_are_ignored(self, tracker, caplog):
        assert tracker.on_annotation_updated({"id": "ghost"}) is None
        assert tracker.on_annotation_deleted({"id": "ghost"}) is None
        assert tracker.pending_count == 0
        assert "untracked annotation ghost" in caplog.text

    def test_resync_records_nothing(self, tracker):
        tracker.resync([{"id": "a1", "type": "note"}, {"id": "a2", "type": "highlight"}])
        assert len(tracker.annotations) == 2
        assert tracker.pending_count == 0

    def test_resync_is_idempotent(self, tracker):
        raws = [{"id": "a1", "type": "note", "contents": "x"}, {"id": "a2", "type": "highlight"}]
        tracker.resync(raws)
        first = list(tracker.annotations)
        tracker.resync(raws)
        assert tracker.annotations == first

    def test_clear_keeps_annotations(self, tracker):
        tracker.on_annotation_created({"id": "a1", "type": "note"})
        tracker.clear()
        assert tracker.pending_count == 0
        assert tracker.find_by_external_id("a1") is not None

    def test_change_summary(self, tracker):
        tracker.on_annotation_created({"id": "a1", "type": "note"})
        tracker.on_annotation_created({"id": "a2", "type": "note"})
        tracker.on_annotation_deleted({"id": "a1"})
        assert tracker.change_summary() == {"create": 2, "update": 0, "delete": 1}

    def test_dispatch_routes_by_action(self, tracker):
        tracker.dispatch(AnnotationEvent(ChangeAction.CREATE, {"id": "a1", "type": "note"}))
        tracker.dispatch(AnnotationEvent(ChangeAction.DELETE, {"id": "a1"}))
        assert tracker.change_summary() == {"create": 1, "update": 0, "delete": 1}


class TestReconcile:
    def test_reconcile_emits_create_update_delete(self, tracker):
        tracker.resync([
            {"id": "keep", "type": "note", "contents": "same"},
            {"id": "edit", "type": "note", "contents": "before"},
            {"id": "gone", "type": "highlight"},
        ])
        produced = tracker.reconcile([
            {"id": "keep", "type": "note", "contents": "same"},
            {"id": "edit", "type": "note", "contents": "after"},
            {"id": "new", "type": "freetext", "contents": "hello"},
        ])
        assert produced == 3
        assert tracker.change_summary() == {"create": 1, "update": 1, "delete": 1}
        assert sorted(a.external_id for a in tracker.annotations) == ["edit", "keep", "new"]

    def test_reconcile_with_same_listing_is_a_no_op(self, tracker):
        raws = [{"id": "a1", "type": "note", "contents": "x"}]
        tracker.resync(raws)
        assert tracker.reconcile(raws) == 0


# ── Event queue ───────────────────────────────────────────────────────────────


class TestEventQueue:
    @pytest.mark.asyncio
    async def test_events_applied_in_order(self, tracker):
        queue = AnnotationEventQueue(tracker)
        queue.publish(AnnotationEvent(ChangeAction.CREATE, {"id": "a1", "type": "note", "contents": "1"}))
        queue.publish(AnnotationEvent(ChangeAction.UPDATE, {"id": "a1", "type": "note", "contents": "2"}))
        queue.publish(AnnotationEvent(ChangeAction.DELETE, {"id": "a1"}))

        await queue.drain()
        assert [c.action for c in tracker.pending_changes] == [
            ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.DELETE,
        ]
        assert tracker.annotations == []
        await queue.stop()
        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_bad_event_does_not_stop_consumer(self, tracker):
        queue = AnnotationEventQueue(tracker)
        queue.publish(AnnotationEvent(ChangeAction.CREATE, {"type": "note"}))  # no id
        queue.publish(AnnotationEvent(ChangeAction.CREATE, {"id": "a2", "type": "note"}))
        await queue.drain()
        assert tracker.find_by_external_id("a2") is not None
        await queue.stop()

    @pytest.mark.asyncio
    async def test_drain_without_events(self, tracker):
        queue = AnnotationEventQueue(tracker)
        await queue.drain()
        assert tracker.pending_count == 0

    @pytest.mark.asyncio
    async def test_publish_starts_consumer(self, tracker):
        queue = AnnotationEventQueue(tracker)
        queue.publish(AnnotationEvent(ChangeAction.CREATE, {"id": "a1", "type": "note"}))
        assert queue.is_running
        await queue.stop()

    def test_apply_queued_keeps_publish_order(self, tracker):
        queue = AnnotationEventQueue(tracker)
        queue.publish(AnnotationEvent(ChangeAction.CREATE, {"id": "a1", "type": "note", "contents": "1"}))
        queue.publish(AnnotationEvent(ChangeAction.UPDATE, {"id": "a1", "type": "note", "contents": "2"}))
        assert not queue.is_running

        assert queue.apply_queued() == 2
        assert [c.action for c in tracker.pending_changes] == [ChangeAction.CREATE, ChangeAction.UPDATE]
        assert tracker.find_by_external_id("a1").contents == "2"
        assert queue.apply_queued() == 0
