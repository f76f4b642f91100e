"""
Version storage, change tracking, diffing, and session control.
"""

from .change_tracker import AnnotationChangeRecord, AnnotationChangeTracker, AnnotationEventQueue
from .diff_engine import DiffEngine, DiffReport, TextDiff
from .version_control import SessionState, SwitchResult, SwitchStatus, VersionController
from .version_store import BlobStore, FileBlobStore, InMemoryBlobStore, VersionStore

__all__ = [
    "AnnotationChangeRecord",
    "AnnotationChangeTracker",
    "AnnotationEventQueue",
    "DiffEngine",
    "DiffReport",
    "TextDiff",
    "SessionState",
    "SwitchResult",
    "SwitchStatus",
    "VersionController",
    "BlobStore",
    "FileBlobStore",
    "InMemoryBlobStore",
    "VersionStore",
]
