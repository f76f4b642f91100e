"""
Diff engine for comparing document versions.

Produces per-page character diffs of the extracted text (merged into
readable spans by a semantic cleanup pass) and an id-keyed comparison of the
annotation snapshots, and combines both into a single report.
"""

from __future__ import annotations

import asyncio
import difflib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from diff_match_patch import diff_match_patch

from ..config import DiffConfig, PDFReviewConfig
from ..core.document_model import AnnotationEntry, Version
from ..errors import DiffTimeoutError, IdenticalVersionError, ValidationError
from .version_store import VersionStore


class DiffOp(Enum):
    """Operation of a text diff segment."""
    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


_DMP_OPS = {
    diff_match_patch.DIFF_EQUAL: DiffOp.EQUAL,
    diff_match_patch.DIFF_INSERT: DiffOp.INSERT,
    diff_match_patch.DIFF_DELETE: DiffOp.DELETE,
}


@dataclass
class TextDiff:
    """Text differences of one page."""

    page_index: int
    segments: List[Tuple[DiffOp, str]] = field(default_factory=list)
    has_changes: bool = False
    added_char_count: int = 0
    removed_char_count: int = 0

    @classmethod
    def from_segments(cls, page_index: int, segments: List[Tuple[DiffOp, str]]) -> TextDiff:
        return cls(
            page_index=page_index,
            segments=segments,
            has_changes=any(op is not DiffOp.EQUAL for op, _ in segments),
            added_char_count=sum(len(text) for op, text in segments if op is DiffOp.INSERT),
            removed_char_count=sum(len(text) for op, text in segments if op is DiffOp.DELETE),
        )

    @property
    def base_text(self) -> str:
        return "".join(text for op, text in self.segments if op is not DiffOp.INSERT)

    @property
    def compare_text(self) -> str:
        return "".join(text for op, text in self.segments if op is not DiffOp.DELETE)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "page_index": self.page_index,
            "segments": [[op.value, text] for op, text in self.segments],
            "has_changes": self.has_changes,
            "added_char_count": self.added_char_count,
            "removed_char_count": self.removed_char_count,
        }


@dataclass
class ModifiedAnnotation:
    """An annotation present in both versions with differing fields."""

    old: AnnotationEntry
    new: AnnotationEntry

    def to_dict(self) -> Dict[str, Any]:
        return {"old": self.old.to_json_dict(), "new": self.new.to_json_dict()}


@dataclass
class AnnotationDiffResult:
    """Annotation differences between two versions."""

    added: List[AnnotationEntry] = field(default_factory=list)
    deleted: List[AnnotationEntry] = field(default_factory=list)
    modified: List[ModifiedAnnotation] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.deleted) + len(self.modified)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "added": [a.to_json_dict() for a in self.added],
            "deleted": [a.to_json_dict() for a in self.deleted],
            "modified": [m.to_dict() for m in self.modified],
        }


class AnnotationChangeKind(Enum):
    """How an annotation changed between versions."""
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


@dataclass
class AnnotationChange:
    """A human-readable annotation change line of a report."""

    kind: AnnotationChangeKind
    annotation: AnnotationEntry
    page_index: int
    description: str
    previous: Optional[AnnotationEntry] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "annotation": self.annotation.to_json_dict(),
            "previous": self.previous.to_json_dict() if self.previous else None,
            "page_index": self.page_index,
            "description": self.description,
        }


@dataclass
class DiffSummary:
    """Counts describing a diff report."""

    total_changes: int = 0
    text_changed_page_count: int = 0
    annotations_added: int = 0
    annotations_removed: int = 0
    annotations_modified: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_changes": self.total_changes,
            "text_changed_page_count": self.text_changed_page_count,
            "annotations_added": self.annotations_added,
            "annotations_removed": self.annotations_removed,
            "annotations_modified": self.annotations_modified,
        }


@dataclass
class DiffReport:
    """The complete comparison of two versions."""

    base_version_id: str
    compare_version_id: str
    text_diffs: List[TextDiff] = field(default_factory=list)
    annotation_diff: AnnotationDiffResult = field(default_factory=AnnotationDiffResult)
    annotation_changes: List[AnnotationChange] = field(default_factory=list)
    summary: DiffSummary = field(default_factory=DiffSummary)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def changed_pages(self) -> List[TextDiff]:
        return [d for d in self.text_diffs if d.has_changes]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "base_version_id": self.base_version_id,
            "compare_version_id": self.compare_version_id,
            "created_at": self.created_at.isoformat(),
            "text_diffs": [d.to_dict() for d in self.text_diffs],
            "annotation_diff": self.annotation_diff.to_dict(),
            "annotation_changes": [c.to_dict() for c in self.annotation_changes],
            "summary": self.summary.to_dict(),
        }


def _annotation_fields(entry: AnnotationEntry) -> Tuple[Any, ...]:
    return (entry.contents, entry.color, entry.page_index, entry.type)


def _describe(prefix: str, entry: AnnotationEntry) -> str:
    description = f"{prefix} {entry.type} annotation"
    if entry.contents:
        description += f': "{entry.contents[:50]}"'
    return description


class DiffEngine:
    """
    Computes text and annotation diffs between versions.

    The version-level methods are pure; ``compute_full_diff`` resolves ids
    through the version store and runs both halves concurrently.
    """

    def __init__(self, store: Optional[VersionStore] = None, config: Optional[PDFReviewConfig] = None):
        self.store = store
        self.config: DiffConfig = config.diff if config else DiffConfig()
        self.semantic_cleanup = config.features.get('semantic_cleanup', True) if config else True
        self.logger = logging.getLogger(__name__)

    def _new_matcher(self) -> diff_match_patch:
        dmp = diff_match_patch()
        dmp.Diff_Timeout = self.config.diff_timeout
        dmp.Diff_EditCost = self.config.edit_cost
        return dmp

    def diff_text(self, old_text: str, new_text: str) -> List[Tuple[DiffOp, str]]:
        """
        Character-level diff of two strings.

        Adjacent edits are merged on word-like boundaries so a changed word
        shows up as one delete/insert pair instead of scattered characters.
        """
        dmp = self._new_matcher()
        diffs = dmp.diff_main(old_text, new_text)
        if self.semantic_cleanup:
            dmp.diff_cleanupSemantic(diffs)
        return [(_DMP_OPS[op], text) for op, text in diffs if text]

    def compute_text_diff(self, base: Version, compare: Version) -> List[TextDiff]:
        """
        Per-page text diffs.

        Page indexes run up to the longer snapshot's length. A page missing
        from one snapshot counts as empty text, so its whole content shows up
        as inserted or deleted.
        """
        base_pages = {page.page_index: page.text for page in reversed(base.page_texts)}
        compare_pages = {page.page_index: page.text for page in reversed(compare.page_texts)}
        page_count = max(len(base.page_texts), len(compare.page_texts))

        results = []
        for page_index in range(page_count):
            old_text = base_pages.get(page_index, "")
            new_text = compare_pages.get(page_index, "")
            results.append(TextDiff.from_segments(page_index, self.diff_text(old_text, new_text)))

        return results

    def compute_annotation_diff(self, base: Version, compare: Version) -> AnnotationDiffResult:
        """
        Compare annotation snapshots by annotation id.

        Identity is the id alone: an id present in both versions whose type
        changed is a modification, never a delete plus an add.
        """
        base_map = {entry.id: entry for entry in base.annotations}
        compare_map = {entry.id: entry for entry in compare.annotations}

        result = AnnotationDiffResult()

        for annotation_id, new_entry in compare_map.items():
            old_entry = base_map.get(annotation_id)
            if old_entry is None:
                result.added.append(new_entry)
            elif _annotation_fields(old_entry) != _annotation_fields(new_entry):
                result.modified.append(ModifiedAnnotation(old=old_entry, new=new_entry))

        for annotation_id, old_entry in base_map.items():
            if annotation_id not in compare_map:
                result.deleted.append(old_entry)

        return result

    def build_annotation_changes(self, diff: AnnotationDiffResult) -> List[AnnotationChange]:
        """Describe annotation differences as report lines."""
        changes = [
            AnnotationChange(
                kind=AnnotationChangeKind.ADDED,
                annotation=entry,
                page_index=entry.page_index,
                description=_describe("Added", entry),
            )
            for entry in diff.added
        ]
        changes.extend(
            AnnotationChange(
                kind=AnnotationChangeKind.REMOVED,
                annotation=entry,
                page_index=entry.page_index,
                description=_describe("Removed", entry),
            )
            for entry in diff.deleted
        )
        changes.extend(
            AnnotationChange(
                kind=AnnotationChangeKind.MODIFIED,
                annotation=pair.new,
                previous=pair.old,
                page_index=pair.new.page_index,
                description=f"Modified {pair.new.type} annotation on page {pair.new.page_index + 1}",
            )
            for pair in diff.modified
        )
        return changes

    def build_report(
        self,
        base: Version,
        compare: Version,
        text_diffs: List[TextDiff],
        annotation_diff: AnnotationDiffResult,
    ) -> DiffReport:
        """Merge both halves into a report and count the summary."""
        text_changed = sum(1 for d in text_diffs if d.has_changes)
        summary = DiffSummary(
            total_changes=text_changed + annotation_diff.total,
            text_changed_page_count=text_changed,
            annotations_added=len(annotation_diff.added),
            annotations_removed=len(annotation_diff.deleted),
            annotations_modified=len(annotation_diff.modified),
        )
        return DiffReport(
            base_version_id=base.id,
            compare_version_id=compare.id,
            text_diffs=text_diffs,
            annotation_diff=annotation_diff,
            annotation_changes=self.build_annotation_changes(annotation_diff),
            summary=summary,
        )

    async def diff_versions(self, base: Version, compare: Version) -> DiffReport:
        """Diff two resolved versions, running both halves concurrently."""
        if base.id == compare.id:
            raise IdenticalVersionError(base.id)

        async def run_both() -> Tuple[List[TextDiff], AnnotationDiffResult]:
            return await asyncio.gather(
                asyncio.to_thread(self.compute_text_diff, base, compare),
                asyncio.to_thread(self.compute_annotation_diff, base, compare),
            )

        try:
            text_diffs, annotation_diff = await asyncio.wait_for(run_both(), self.config.compute_timeout)
        except asyncio.TimeoutError:
            raise DiffTimeoutError(
                f"Diff of {base.label} and {compare.label} exceeded {self.config.compute_timeout}s"
            ) from None

        report = self.build_report(base, compare, text_diffs, annotation_diff)
        self.logger.info(
            f"Compared {base.label} -> {compare.label}: {report.summary.total_changes} changes"
        )
        return report

    async def compute_full_diff(self, base_version_id: str, compare_version_id: str) -> DiffReport:
        """
        Diff two versions by id.

        Raises IdenticalVersionError for equal ids and VersionNotFoundError
        when either id does not resolve.
        """
        if base_version_id == compare_version_id:
            raise IdenticalVersionError(base_version_id)
        if self.store is None:
            raise ValidationError("DiffEngine needs a version store to resolve version ids")

        base = self.store.get_by_id(base_version_id)
        compare = self.store.get_by_id(compare_version_id)
        return await self.diff_versions(base, compare)

    def generate_text_diff(
        self,
        report: DiffReport,
        base_label: str = "base",
        compare_label: str = "compare",
        context_lines: int = 3,
    ) -> str:
        """
        Generate a unified text diff of the changed pages, similar to git diff.

        Annotation changes follow as comment lines.
        """
        lines: List[str] = []
        for page in report.changed_pages:
            diff_lines = difflib.unified_diff(
                page.base_text.splitlines(),
                page.compare_text.splitlines(),
                fromfile=f"{base_label}/page-{page.page_index + 1}",
                tofile=f"{compare_label}/page-{page.page_index + 1}",
                n=context_lines,
                lineterm="",
            )
            lines.extend(f"{line}\n" for line in diff_lines)

        for change in report.annotation_changes:
            lines.append(f"# {change.description}\n")

        return "".join(lines)

    def summarize_changes(self, report: DiffReport) -> Dict[str, Any]:
        """
        Generate a human-readable summary of changes.

        Args:
            report: DiffReport to summarize

        Returns:
            Dictionary with change summary
        """
        summary = report.summary
        text_changes = [
            f"Page {d.page_index + 1}: +{d.added_char_count} / -{d.removed_char_count} characters"
            for d in report.changed_pages
        ]

        annotation_overview = []
        if summary.annotations_added:
            annotation_overview.append(f"Added {summary.annotations_added} annotations")
        if summary.annotations_removed:
            annotation_overview.append(f"Removed {summary.annotations_removed} annotations")
        if summary.annotations_modified:
            annotation_overview.append(f"Modified {summary.annotations_modified} annotations")

        return {
            "overview": f"Found {summary.total_changes} changes between versions",
            "text_changes": text_changes,
            "annotation_overview": annotation_overview,
            "annotation_changes": [c.description for c in report.annotation_changes],
        }
