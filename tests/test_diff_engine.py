"""Tests for the diff engine."""

import json
import time

import pytest

from pdf_review.config import PDFReviewConfig
from pdf_review.core.document_model import Version
from pdf_review.errors import DiffTimeoutError, IdenticalVersionError, ValidationError, VersionNotFoundError
from pdf_review.version.diff_engine import AnnotationChangeKind, DiffEngine, DiffOp


def page_snapshot(*texts):
    return json.dumps([{"pageIndex": i, "text": t} for i, t in enumerate(texts)])


def version(version_id, number, pages=(), annotations=(), document_id="doc"):
    return Version(
        id=version_id,
        document_id=document_id,
        version_number=number,
        message=f"v{number}",
        annotation_snapshot=json.dumps(list(annotations)),
        page_text_snapshot=page_snapshot(*pages),
    )


@pytest.fixture
def engine():
    return DiffEngine()


# ── Text diffs ────────────────────────────────────────────────────────────────


class TestTextDiff:
    def test_inserted_word(self, engine):
        base = version("v1", 1, pages=["Hello world"])
        compare = version("v2", 2, pages=["Hello there world"])

        diffs = engine.compute_text_diff(base, compare)
        assert len(diffs) == 1
        page = diffs[0]
        assert page.has_changes
        assert page.added_char_count == 6
        assert page.removed_char_count == 0
        assert [t.strip() for op, t in page.segments if op is DiffOp.INSERT] == ["there"]

    def test_identical_pages_have_no_changes(self, engine):
        base = version("v1", 1, pages=["Same", "Text"])
        compare = version("v2", 2, pages=["Same", "Text"])
        assert not any(d.has_changes for d in engine.compute_text_diff(base, compare))

    def test_missing_page_counts_as_inserted(self, engine):
        base = version("v1", 1, pages=["One"])
        compare = version("v2", 2, pages=["One", "Two"])
        diffs = engine.compute_text_diff(base, compare)
        assert len(diffs) == 2
        assert diffs[1].segments == [(DiffOp.INSERT, "Two")]
        assert diffs[1].added_char_count == 3

    def test_page_range_follows_snapshot_lengths(self, engine):
        base = version("v1", 1, pages=["One"])
        compare = Version(
            id="v2",
            document_id="doc",
            version_number=2,
            message="v2",
            page_text_snapshot=json.dumps([{"pageIndex": 2, "text": "Three"}]),
        )
        diffs = engine.compute_text_diff(base, compare)
        assert [d.page_index for d in diffs] == [0]
        assert diffs[0].segments == [(DiffOp.DELETE, "One")]

    def test_segments_reconstruct_both_texts(self, engine):
        old = "The quick brown fox jumps over the lazy dog"
        new = "The quick red fox leaped over the dog"
        page = engine.compute_text_diff(version("a", 1, pages=[old]), version("b", 2, pages=[new]))[0]
        assert page.base_text == old
        assert page.compare_text == new

    def test_swapped_versions_mirror_counts(self, engine):
        first = version("a", 1, pages=["alpha beta gamma"])
        second = version("b", 2, pages=["alpha delta gamma epsilon"])
        forward = engine.compute_text_diff(first, second)[0]
        backward = engine.compute_text_diff(second, first)[0]
        assert forward.added_char_count == backward.removed_char_count
        assert forward.removed_char_count == backward.added_char_count

    def test_semantic_cleanup_can_be_disabled(self):
        config = PDFReviewConfig()
        config.features["semantic_cleanup"] = False
        engine = DiffEngine(config=config)
        segments = engine.diff_text("mouse", "sofas")
        assert "".join(t for op, t in segments if op is not DiffOp.INSERT) == "mouse"
        assert "".join(t for op, t in segments if op is not DiffOp.DELETE) == "sofas"


# ── Annotation diffs ──────────────────────────────────────────────────────────


class TestAnnotationDiff:
    def test_added_removed_modified(self, engine):
        base = version("v1", 1, annotations=[
            {"id": "a", "type": "note", "pageIndex": 0, "contents": "old"},
            {"id": "b", "type": "highlight", "pageIndex": 1},
        ])
        compare = version("v2", 2, annotations=[
            {"id": "a", "type": "note", "pageIndex": 0, "contents": "new"},
            {"id": "c", "type": "freetext", "pageIndex": 2, "contents": "fresh"},
        ])

        diff = engine.compute_annotation_diff(base, compare)
        assert [a.id for a in diff.added] == ["c"]
        assert [a.id for a in diff.deleted] == ["b"]
        assert [(m.old.contents, m.new.contents) for m in diff.modified] == [("old", "new")]
        assert diff.total == 3

    def test_type_change_is_a_modification(self, engine):
        base = version("v1", 1, annotations=[{"id": "a", "type": "note", "pageIndex": 0}])
        compare = version("v2", 2, annotations=[{"id": "a", "type": "highlight", "pageIndex": 0}])
        diff = engine.compute_annotation_diff(base, compare)
        assert diff.added == [] and diff.deleted == []
        assert len(diff.modified) == 1

    def test_color_change_is_a_modification(self, engine):
        base = version("v1", 1, annotations=[{"id": "a", "type": "highlight", "color": "#ff0000"}])
        compare = version("v2", 2, annotations=[{"id": "a", "type": "highlight", "color": "#00ff00"}])
        assert len(engine.compute_annotation_diff(base, compare).modified) == 1

    def test_change_descriptions(self, engine):
        base = version("v1", 1, annotations=[
            {"id": "m", "type": "note", "pageIndex": 2, "contents": "x"},
            {"id": "r", "type": "highlight", "pageIndex": 0},
        ])
        compare = version("v2", 2, annotations=[
            {"id": "m", "type": "note", "pageIndex": 2, "contents": "y"},
            {"id": "n", "type": "note", "pageIndex": 0, "contents": "A" * 80},
        ])
        changes = engine.build_annotation_changes(engine.compute_annotation_diff(base, compare))
        by_kind = {c.kind: c for c in changes}
        assert by_kind[AnnotationChangeKind.ADDED].description == f'Added note annotation: "{"A" * 50}"'
        assert by_kind[AnnotationChangeKind.REMOVED].description == "Removed highlight annotation"
        assert by_kind[AnnotationChangeKind.MODIFIED].description == "Modified note annotation on page 3"
        assert by_kind[AnnotationChangeKind.MODIFIED].previous.contents == "x"

    def test_swapping_versions_swaps_added_and_deleted(self, engine):
        first = version("a", 1, annotations=[{"id": "x", "type": "note"}, {"id": "y", "type": "note"}])
        second = version("b", 2, annotations=[{"id": "y", "type": "note"}, {"id": "z", "type": "note"}])
        forward = engine.compute_annotation_diff(first, second)
        backward = engine.compute_annotation_diff(second, first)
        assert [a.id for a in forward.added] == [a.id for a in backward.deleted]
        assert [a.id for a in forward.deleted] == [a.id for a in backward.added]

    def test_wrapped_snapshot_format(self, engine):
        base = version("v1", 1)
        wrapped = json.dumps({"annotations": [{"id": "w", "type": "note", "text": "body", "contents": "ignored"}]})
        compare = Version(id="v2", document_id="doc", version_number=2, message="", annotation_snapshot=wrapped)
        diff = engine.compute_annotation_diff(base, compare)
        assert diff.added[0].contents == "body"

    def test_corrupt_snapshot_reads_as_empty(self, engine):
        base = Version(id="v1", document_id="doc", version_number=1, message="", annotation_snapshot="{oops")
        compare = version("v2", 2, annotations=[{"id": "a", "type": "note"}])
        assert [a.id for a in engine.compute_annotation_diff(base, compare).added] == ["a"]


# ── Reports ───────────────────────────────────────────────────────────────────


class TestReports:
    @pytest.mark.asyncio
    async def test_summary_counts(self, engine):
        base = version("v1", 1, pages=["Hello world", "Same"], annotations=[{"id": "a", "type": "note"}])
        compare = version("v2", 2, pages=["Hello there world", "Same"], annotations=[{"id": "b", "type": "note"}])

        report = await engine.diff_versions(base, compare)
        assert report.summary.text_changed_page_count == 1
        assert report.summary.annotations_added == 1
        assert report.summary.annotations_removed == 1
        assert report.summary.total_changes == 3
        assert [d.page_index for d in report.changed_pages] == [0]

    @pytest.mark.asyncio
    async def test_self_compare_is_rejected(self, engine):
        v = version("v1", 1, pages=["x"])
        with pytest.raises(IdenticalVersionError):
            await engine.diff_versions(v, v)

    @pytest.mark.asyncio
    async def test_compute_full_diff_resolves_ids(self, store):
        document = store.create_document("a.pdf")
        first = store.create(version("v1", 1, pages=["a"], document_id=document.id), b"%PDF-1")
        second = store.create(version("v2", 2, pages=["b"], document_id=document.id), b"%PDF-2")

        report = await DiffEngine(store).compute_full_diff(first.id, second.id)
        assert report.base_version_id == "v1"
        assert report.compare_version_id == "v2"

        with pytest.raises(VersionNotFoundError):
            await DiffEngine(store).compute_full_diff(first.id, "missing")
        with pytest.raises(IdenticalVersionError):
            await DiffEngine(store).compute_full_diff(first.id, first.id)

    @pytest.mark.asyncio
    async def test_compute_full_diff_needs_store(self, engine):
        with pytest.raises(ValidationError):
            await engine.compute_full_diff("a", "b")

    @pytest.mark.asyncio
    async def test_slow_diff_times_out(self, monkeypatch):
        config = PDFReviewConfig()
        config.diff.compute_timeout = 0.05
        engine = DiffEngine(config=config)

        def slow_diff(base, compare):
            time.sleep(0.5)
            return []

        monkeypatch.setattr(engine, "compute_text_diff", slow_diff)
        with pytest.raises(DiffTimeoutError):
            await engine.diff_versions(version("a", 1), version("b", 2))

    @pytest.mark.asyncio
    async def test_report_serializes(self, engine):
        report = await engine.diff_versions(
            version("a", 1, pages=["x"], annotations=[{"id": "n", "type": "note", "contents": "c"}]),
            version("b", 2, pages=["y"]),
        )
        data = json.loads(json.dumps(report.to_dict()))
        assert data["summary"]["annotations_removed"] == 1
        assert data["annotation_diff"]["deleted"][0]["contents"] == "c"
        assert data["text_diffs"][0]["segments"][0][0] in ("delete", "insert")

    @pytest.mark.asyncio
    async def test_text_output_and_summary(self, engine):
        report = await engine.diff_versions(
            version("a", 1, pages=["Hello world"]),
            version("b", 2, pages=["Hello there world"], annotations=[{"id": "n", "type": "note", "contents": "hi"}]),
        )
        text = engine.generate_text_diff(report, "V1", "V2")
        assert "--- V1/page-1" in text
        assert "+Hello there world" in text
        assert '# Added note annotation: "hi"' in text

        summary = engine.summarize_changes(report)
        assert summary["overview"] == "Found 2 changes between versions"
        assert summary["text_changes"] == ["Page 1: +6 / -0 characters"]
        assert summary["annotation_overview"] == ["Added 1 annotations"]
