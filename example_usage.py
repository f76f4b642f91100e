"""
Example usage of the PDF Review versioning core.

This demonstrates how an interactive viewer plugs into the version
controller: annotation events stream in while the user reviews, commits
snapshot the viewer's state, and versions can be compared and switched.
"""

import asyncio
import json

from pdf_review.core.annotations import ChangeAction
from pdf_review.renderer.base import Renderer
from pdf_review.version.version_control import SwitchStatus, VersionController
from pdf_review.version.version_store import VersionStore


class DemoViewer(Renderer):
    """A tiny in-memory viewer standing in for a real PDF renderer."""

    def __init__(self, pages):
        super().__init__()
        self.pages = list(pages)
        self.annotations = {}

    @property
    def total_page_count(self):
        return len(self.pages)

    async def export_binary_content(self):
        state = {"pages": self.pages, "annotations": list(self.annotations.values())}
        return b"%PDF-1.7\n" + json.dumps(state).encode()

    async def export_annotation_snapshot(self):
        return list(self.annotations.values())

    async def export_page_text(self, page_index):
        return self.pages[page_index]

    async def list_annotations(self):
        return list(self.annotations.values())

    async def load_content(self, content):
        state = json.loads(content[len(b"%PDF-1.7\n"):] or b"{}")
        self.pages = state.get("pages", self.pages)
        self.annotations = {a["id"]: a for a in state.get("annotations", [])}

    # Simulated user actions

    def annotate(self, annotation):
        self.annotations[annotation["id"]] = annotation
        self.emit(ChangeAction.CREATE, annotation)

    def edit(self, annotation_id, **fields):
        self.annotations[annotation_id].update(fields)
        self.emit(ChangeAction.UPDATE, self.annotations[annotation_id])


async def example_review_session():
    """Commit two rounds of review and compare them."""

    viewer = DemoViewer(["Hello world", "Terms and conditions"])
    initial = b"%PDF-1.7\n" + json.dumps({"pages": viewer.pages, "annotations": []}).encode()

    controller = VersionController(VersionStore())
    controller.attach_renderer(viewer)

    v1 = await controller.open_document("contract.pdf", initial)
    print(f"✓ Opened document as {v1.label} ({v1.message})")

    # First round of review
    viewer.annotate({"id": "a1", "type": "highlight", "pageIndex": 0, "color": "#ffff00"})
    viewer.annotate({"id": "a2", "type": "note", "pageIndex": 1, "contents": "Check clause 3"})
    await controller.sync_events()
    print(f"Pending changes: {controller.pending_count}")

    v2 = await controller.commit("First review pass")
    print(f"✓ Committed {v2.label} with {v2.annotation_count} annotations")

    # Second round
    viewer.pages[0] = "Hello there world"
    viewer.edit("a2", contents="Clause 3 looks fine")
    v3 = await controller.commit("Second review pass")
    print(f"✓ Committed {v3.label}")

    # Compare
    report = await controller.compare(v2.id, v3.id)
    summary = controller.diff_engine.summarize_changes(report)
    print(f"\n=== {v2.label} → {v3.label} ===")
    print(summary["overview"])
    for line in summary["text_changes"] + summary["annotation_changes"]:
        print(f"• {line}")

    # Switch back with unsaved work
    viewer.annotate({"id": "a3", "type": "freetext", "pageIndex": 0, "contents": "Draft"})
    result = await controller.request_switch(v1.id)
    if result.status is SwitchStatus.CONFIRMATION_REQUIRED:
        print(f"\nSwitching would discard {result.pending_count} change(s); confirming")
        result = await controller.confirm_switch()
    print(f"✓ Now viewing {result.version.label}")

    print("\n=== Version History ===")
    for version in controller.history():
        print(f"• {version.label}: {version.message} ({version.created_at.strftime('%H:%M:%S')})")

    await controller.close()


if __name__ == "__main__":
    print("PDF Review Example")
    print("==================")
    asyncio.run(example_review_session())
