"""
Annotation taxonomy and renderer payload mapping.

Renderers report annotations with their own type strings (PDF ``/Subtype``
names, vendor-prefixed names, ...). This module collapses them onto the small
closed set of canonical annotation types and turns raw renderer payloads into
typed, per-kind records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class AnnotationType(str, Enum):
    """Canonical annotation types."""
    HIGHLIGHT = "highlight"
    NOTE = "note"
    FREETEXT = "freetext"
    REDACTION = "redaction"
    TEXT_EDIT = "textEdit"


# Keys are lower-cased, without a leading "/".
RENDERER_TYPE_MAP: Dict[str, AnnotationType] = {
    # Canonical names map to themselves
    "highlight": AnnotationType.HIGHLIGHT,
    "note": AnnotationType.NOTE,
    "freetext": AnnotationType.FREETEXT,
    "redaction": AnnotationType.REDACTION,
    "textedit": AnnotationType.TEXT_EDIT,
    # PDF /Subtype names
    "underline": AnnotationType.HIGHLIGHT,
    "squiggly": AnnotationType.HIGHLIGHT,
    "text": AnnotationType.NOTE,
    "popup": AnnotationType.NOTE,
    "redact": AnnotationType.REDACTION,
    "strikeout": AnnotationType.TEXT_EDIT,
    "caret": AnnotationType.TEXT_EDIT,
    # Viewer SDK names
    "pspdfkit/markup/highlight": AnnotationType.HIGHLIGHT,
    "pspdfkit/markup/underline": AnnotationType.HIGHLIGHT,
    "pspdfkit/markup/squiggly": AnnotationType.HIGHLIGHT,
    "pspdfkit/markup/strikeout": AnnotationType.TEXT_EDIT,
    "pspdfkit/markup/redaction": AnnotationType.REDACTION,
    "pspdfkit/note": AnnotationType.NOTE,
    "pspdfkit/comment-marker": AnnotationType.NOTE,
    "pspdfkit/text": AnnotationType.FREETEXT,
}


def _normalize_type_key(renderer_type: str) -> str:
    return str(renderer_type or "").strip().lstrip("/").lower()


def is_mapped_type(renderer_type: str) -> bool:
    """Return True if the renderer type has an explicit canonical mapping."""
    return _normalize_type_key(renderer_type) in RENDERER_TYPE_MAP


def canonical_type(renderer_type: str) -> AnnotationType:
    """
    Map a renderer type string to its canonical AnnotationType.

    Unrecognised subtypes fall back to ``freetext``.
    """
    return RENDERER_TYPE_MAP.get(_normalize_type_key(renderer_type), AnnotationType.FREETEXT)


class RawAnnotation(BaseModel):
    """An annotation payload exactly as a renderer reports it."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    type: str = "unknown"
    page_index: int = Field(default=0, alias="pageIndex")
    contents: Optional[str] = None
    text: Optional[str] = None
    color: Optional[str] = None

    @field_validator("id", "type", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("page_index", mode="before")
    @classmethod
    def _coerce_page_index(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            return 0
        return value

    @property
    def body(self) -> str:
        """Textual body of the annotation, whichever field carries it."""
        if self.contents is not None:
            return self.contents
        return self.text or ""

    @classmethod
    def coerce(cls, raw: Union[RawAnnotation, Mapping[str, Any]]) -> RawAnnotation:
        """Accept either a parsed RawAnnotation or a plain mapping."""
        if isinstance(raw, RawAnnotation):
            return raw
        return cls.model_validate(dict(raw))


# Per-kind payloads: each variant carries only the fields valid for its kind.

class HighlightPayload(BaseModel):
    kind: Literal["highlight"] = "highlight"
    annotation_type: ClassVar[AnnotationType] = AnnotationType.HIGHLIGHT

    color: str = ""


class NotePayload(BaseModel):
    kind: Literal["note"] = "note"
    annotation_type: ClassVar[AnnotationType] = AnnotationType.NOTE

    contents: str = ""
    color: str = ""


class FreeTextPayload(BaseModel):
    kind: Literal["freetext"] = "freetext"
    annotation_type: ClassVar[AnnotationType] = AnnotationType.FREETEXT

    contents: str = ""
    color: str = ""


class RedactionPayload(BaseModel):
    kind: Literal["redaction"] = "redaction"
    annotation_type: ClassVar[AnnotationType] = AnnotationType.REDACTION

    color: str = ""


class TextEditPayload(BaseModel):
    kind: Literal["textEdit"] = "textEdit"
    annotation_type: ClassVar[AnnotationType] = AnnotationType.TEXT_EDIT

    contents: str = ""


class UnmappedPayload(BaseModel):
    """A renderer subtype with no canonical mapping; treated as free text."""

    kind: Literal["unmapped"] = "unmapped"
    annotation_type: ClassVar[AnnotationType] = AnnotationType.FREETEXT

    raw_type: str = ""
    contents: str = ""
    color: str = ""


AnnotationPayload = Annotated[
    Union[
        HighlightPayload,
        NotePayload,
        FreeTextPayload,
        RedactionPayload,
        TextEditPayload,
        UnmappedPayload,
    ],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(AnnotationPayload)


def parse_payload(data: Mapping[str, Any]) -> AnnotationPayload:
    """Validate a serialized payload, selecting the variant by its ``kind``."""
    return _payload_adapter.validate_python(dict(data))


def map_raw_annotation(raw: Union[RawAnnotation, Mapping[str, Any]]) -> AnnotationPayload:
    """Build the typed payload for a raw renderer annotation."""
    raw = RawAnnotation.coerce(raw)
    color = raw.color or ""

    if not is_mapped_type(raw.type):
        return UnmappedPayload(raw_type=raw.type, contents=raw.body, color=color)

    annotation_type = canonical_type(raw.type)
    if annotation_type is AnnotationType.HIGHLIGHT:
        return HighlightPayload(color=color)
    if annotation_type is AnnotationType.NOTE:
        return NotePayload(contents=raw.body, color=color)
    if annotation_type is AnnotationType.REDACTION:
        return RedactionPayload(color=color)
    if annotation_type is AnnotationType.TEXT_EDIT:
        return TextEditPayload(contents=raw.body)
    return FreeTextPayload(contents=raw.body, color=color)


def tracked_id_for(external_id: str) -> str:
    """Stable tracker id for a renderer annotation id."""
    return f"trk-{external_id}"


@dataclass
class TrackedAnnotation:
    """Live mirror of one annotation currently present in the renderer."""

    id: str
    external_id: str
    type: AnnotationType
    page_index: int = 0
    contents: str = ""
    color: str = ""
    created_at: datetime = field(default_factory=datetime.now, compare=False)
    updated_at: datetime = field(default_factory=datetime.now, compare=False)

    @classmethod
    def from_raw(cls, raw: Union[RawAnnotation, Mapping[str, Any]]) -> TrackedAnnotation:
        """Project a raw renderer annotation into a tracked record."""
        raw = RawAnnotation.coerce(raw)
        payload = map_raw_annotation(raw)
        now = datetime.now()
        return cls(
            id=tracked_id_for(raw.id),
            external_id=raw.id,
            type=payload.annotation_type,
            page_index=raw.page_index,
            contents=getattr(payload, "contents", ""),
            color=getattr(payload, "color", ""),
            created_at=now,
            updated_at=now,
        )

    def apply(self, raw: RawAnnotation) -> None:
        """Apply an update event's field values."""
        payload = map_raw_annotation(raw)
        self.contents = getattr(payload, "contents", "")
        self.color = getattr(payload, "color", "")
        self.page_index = raw.page_index
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "external_id": self.external_id,
            "type": self.type.value,
            "page_index": self.page_index,
            "contents": self.contents,
            "color": self.color,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


RawInput = Union[RawAnnotation, Mapping[str, Any]]


class ChangeAction(Enum):
    """Kinds of annotation change."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class AnnotationEvent:
    """A renderer annotation event."""

    action: ChangeAction
    raw: RawInput
