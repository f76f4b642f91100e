"""
Core document model: documents, immutable versions, and the JSON snapshot
formats captured at commit time.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class AnnotationEntry(BaseModel):
    """One annotation as recorded in a version's annotation snapshot."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    type: str = "unknown"
    page_index: int = Field(default=0, alias="pageIndex")
    contents: Optional[str] = None
    color: Optional[str] = None
    bounding_box: Optional[Dict[str, float]] = Field(default=None, alias="boundingBox")

    def to_json_dict(self) -> Dict[str, Any]:
        """Snapshot representation (camelCase keys, absent fields omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PageText(BaseModel):
    """Extracted text of one page."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    page_index: int = Field(alias="pageIndex")
    text: str = ""


def _entry_from_mapping(data: Mapping[str, Any], wrapped: bool) -> AnnotationEntry:
    page_index = data.get("pageIndex")
    if isinstance(page_index, bool) or not isinstance(page_index, int):
        page_index = 0

    # The wrapped export format stores the body under "text"
    contents = None
    if wrapped and isinstance(data.get("text"), str):
        contents = data["text"]
    elif isinstance(data.get("contents"), str):
        contents = data["contents"]

    color = data.get("color") if isinstance(data.get("color"), str) else None

    bounding_box = None
    bbox = data.get("bbox", data.get("boundingBox")) if wrapped else data.get("boundingBox")
    if isinstance(bbox, Mapping):
        bounding_box = {str(k): v for k, v in bbox.items() if isinstance(v, (int, float))}

    raw_id = data.get("id")
    raw_type = data.get("type")
    return AnnotationEntry(
        id="" if raw_id is None else str(raw_id),
        type="unknown" if raw_type is None else str(raw_type),
        page_index=page_index,
        contents=contents,
        color=color,
        bounding_box=bounding_box,
    )


def parse_annotation_snapshot(raw: Union[str, List[Any], Dict[str, Any], None]) -> List[AnnotationEntry]:
    """
    Parse an annotation snapshot.

    Accepts both the bare array form and the wrapped ``{"annotations": [...]}``
    form, either as a JSON string or as already-decoded data.
    """
    if raw is None or raw == "":
        return []

    data: Any = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring undecodable annotation snapshot: {e}")
            return []

    if isinstance(data, Mapping) and isinstance(data.get("annotations"), list):
        items, wrapped = data["annotations"], True
    elif isinstance(data, list):
        items, wrapped = data, False
    else:
        logger.warning("Ignoring annotation snapshot with unexpected shape")
        return []

    entries = []
    for item in items:
        if isinstance(item, AnnotationEntry):
            entries.append(item)
        elif isinstance(item, Mapping):
            entries.append(_entry_from_mapping(item, wrapped))
    return entries


def serialize_annotation_snapshot(entries: Iterable[Union[AnnotationEntry, Mapping[str, Any]]]) -> str:
    """Serialize annotation entries as a bare JSON array."""
    normalized = parse_annotation_snapshot(list(entries))
    return json.dumps([entry.to_json_dict() for entry in normalized])


def parse_page_text_snapshot(raw: Union[str, List[Any], None]) -> List[PageText]:
    """Parse a page text snapshot: ``[{"pageIndex": int, "text": str}, ...]``."""
    if raw is None or raw == "":
        return []

    data: Any = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring undecodable page text snapshot: {e}")
            return []

    if not isinstance(data, list):
        logger.warning("Ignoring page text snapshot that is not an array")
        return []

    pages = []
    for item in data:
        if isinstance(item, PageText):
            pages.append(item)
        elif isinstance(item, Mapping) and isinstance(item.get("pageIndex"), int):
            text = item.get("text")
            pages.append(PageText(page_index=item["pageIndex"], text=text if isinstance(text, str) else ""))
    return pages


def serialize_page_text_snapshot(pages: Iterable[PageText]) -> str:
    """Serialize page texts in page order."""
    return json.dumps([page.model_dump(by_alias=True) for page in pages])


@dataclass
class Document:
    """An uploaded document. Owns many versions through the version store."""

    name: str
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=datetime.now)
    current_version_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "current_version_id": self.current_version_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Document:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            created_at=datetime.fromisoformat(data["created_at"]),
            current_version_id=data.get("current_version_id"),
        )


@dataclass(frozen=True)
class Version:
    """
    An immutable, numbered snapshot of a document.

    The rendered bytes live in the blob store under the version id; the
    version records their hash and size.
    """

    id: str
    document_id: str
    version_number: int
    message: str
    annotation_snapshot: str = "[]"
    page_text_snapshot: str = "[]"
    content_hash: str = ""
    content_size: int = 0
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def annotations(self) -> List[AnnotationEntry]:
        """Parsed annotation snapshot."""
        return parse_annotation_snapshot(self.annotation_snapshot)

    @property
    def page_texts(self) -> List[PageText]:
        """Parsed page text snapshot."""
        return parse_page_text_snapshot(self.page_text_snapshot)

    @property
    def annotation_count(self) -> int:
        return len(self.annotations)

    @property
    def label(self) -> str:
        return f"V{self.version_number}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "version_number": self.version_number,
            "message": self.message,
            "annotation_snapshot": self.annotation_snapshot,
            "page_text_snapshot": self.page_text_snapshot,
            "content_hash": self.content_hash,
            "content_size": self.content_size,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Version:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            version_number=int(data["version_number"]),
            message=data.get("message", ""),
            annotation_snapshot=data.get("annotation_snapshot", "[]"),
            page_text_snapshot=data.get("page_text_snapshot", "[]"),
            content_hash=data.get("content_hash", ""),
            content_size=int(data.get("content_size", 0)),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
