"""
Core document, version, and annotation model modules.
"""

from .annotations import (
    AnnotationEvent,
    AnnotationType,
    ChangeAction,
    RawAnnotation,
    TrackedAnnotation,
    canonical_type,
    map_raw_annotation,
    parse_payload,
)
from .document_model import (
    AnnotationEntry,
    Document,
    PageText,
    Version,
    parse_annotation_snapshot,
    parse_page_text_snapshot,
    serialize_annotation_snapshot,
    serialize_page_text_snapshot,
)

__all__ = [
    "AnnotationEvent",
    "ChangeAction",
    "AnnotationType",
    "RawAnnotation",
    "TrackedAnnotation",
    "canonical_type",
    "map_raw_annotation",
    "parse_payload",
    "AnnotationEntry",
    "Document",
    "PageText",
    "Version",
    "parse_annotation_snapshot",
    "parse_page_text_snapshot",
    "serialize_annotation_snapshot",
    "serialize_page_text_snapshot",
]
