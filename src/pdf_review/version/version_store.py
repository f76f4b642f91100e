"""
Version store: the single source of truth for persisted versions.

Versions are indexed in memory (optionally mirrored to a JSON index on disk,
like a lightweight repository) while rendered document bytes live in a blob
store keyed by version id.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from ..core.document_model import Document, Version
from ..errors import DocumentNotFoundError, NotFoundError, SequenceError, VersionNotFoundError


class BlobStore(ABC):
    """Durable key-value store for rendered document bytes."""

    @abstractmethod
    def put(self, version_id: str, content: bytes) -> None:
        """Store content under a version id. A partial write is never visible."""

    @abstractmethod
    def get(self, version_id: str) -> bytes:
        """Return stored content, raising NotFoundError if absent."""

    @abstractmethod
    def exists(self, version_id: str) -> bool:
        """Check whether content is stored for a version id."""


class InMemoryBlobStore(BlobStore):
    """Blob store backed by a dictionary."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    def put(self, version_id: str, content: bytes) -> None:
        self._blobs[version_id] = bytes(content)

    def get(self, version_id: str) -> bytes:
        try:
            return self._blobs[version_id]
        except KeyError:
            raise NotFoundError(f"No content stored for version {version_id}") from None

    def exists(self, version_id: str) -> bool:
        return version_id in self._blobs


class FileBlobStore(BlobStore):
    """Blob store keeping one file per version under a directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, version_id: str) -> Path:
        return self.root / f"{version_id}.pdf"

    def put(self, version_id: str, content: bytes) -> None:
        # Write to a sibling temp file and rename so readers never see a partial blob
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".blob-", suffix=".tmp")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path_for(version_id))
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get(self, version_id: str) -> bytes:
        path = self._path_for(version_id)
        if not path.exists():
            raise NotFoundError(f"No content stored for version {version_id}")
        return path.read_bytes()

    def exists(self, version_id: str) -> bool:
        return self._path_for(version_id).exists()


class VersionStore:
    """
    Index of all documents and their versions.

    Versions can only be created, never updated or deleted. When a storage
    path is given the index is persisted to ``versions.json`` and blobs are
    written under ``blobs/``.
    """

    INDEX_FILE = "versions.json"

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        storage_path: Optional[Path] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.storage_path = Path(storage_path) if storage_path else None

        if blob_store is None:
            if self.storage_path is not None:
                blob_store = FileBlobStore(self.storage_path / "blobs")
            else:
                blob_store = InMemoryBlobStore()
        self.blob_store = blob_store

        self._documents: Dict[str, Document] = {}
        self._versions: Dict[str, Version] = {}

        if self.storage_path is not None:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load_index()

    # Persistence

    @property
    def index_path(self) -> Optional[Path]:
        if self.storage_path is None:
            return None
        return self.storage_path / self.INDEX_FILE

    def _load_index(self) -> None:
        """Load documents and versions from the on-disk index."""
        index_path = self.index_path
        if index_path is None or not index_path.exists():
            return

        try:
            with open(index_path, 'r') as f:
                data = json.load(f)

            for document_data in data.get("documents", []):
                document = Document.from_dict(document_data)
                self._documents[document.id] = document

            for version_data in data.get("versions", []):
                version = Version.from_dict(version_data)
                self._versions[version.id] = version

        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            # Start with empty state if loading fails
            self.logger.warning(f"Could not load version index {index_path}: {e}")
            self._documents = {}
            self._versions = {}

    def _save_index(self) -> None:
        """Write the index atomically."""
        index_path = self.index_path
        if index_path is None:
            return

        data = {
            "documents": [d.to_dict() for d in self._documents.values()],
            "versions": [v.to_dict() for v in self._versions.values()],
        }

        fd, tmp_name = tempfile.mkstemp(dir=index_path.parent, prefix=".index-", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, index_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    # Documents

    def create_document(self, name: str) -> Document:
        """Register a new document."""
        document = Document(name=name)
        self._documents[document.id] = document
        try:
            self._save_index()
        except Exception:
            self._documents.pop(document.id, None)
            raise
        self.logger.info(f"Created document {document.id} ({name})")
        return document

    def get_document(self, document_id: str) -> Document:
        """Get a document by id."""
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def list_documents(self) -> List[Document]:
        """All documents, newest first."""
        return sorted(self._documents.values(), key=lambda d: d.created_at, reverse=True)

    def set_current_version(self, document_id: str, version_id: str) -> None:
        """Move a document's current-version pointer."""
        document = self.get_document(document_id)
        version = self.get_by_id(version_id)
        if version.document_id != document_id:
            raise VersionNotFoundError(version_id)

        previous = document.current_version_id
        document.current_version_id = version_id
        try:
            self._save_index()
        except Exception:
            document.current_version_id = previous
            raise

    # Versions

    def latest_version_number(self, document_id: str) -> int:
        """Highest version number for a document, 0 if it has none."""
        numbers = [v.version_number for v in self._versions.values() if v.document_id == document_id]
        return max(numbers, default=0)

    def next_version_number(self, document_id: str) -> int:
        return self.latest_version_number(document_id) + 1

    def _check_new_version(self, version: Version) -> None:
        expected = self.next_version_number(version.document_id)
        if version.version_number != expected:
            raise SequenceError(
                f"Version number {version.version_number} is out of sequence "
                f"for document {version.document_id} (expected {expected})"
            )
        if version.id in self._versions:
            raise SequenceError(f"Version id already exists: {version.id}")

    def create(self, version: Version, binary_content: bytes) -> Version:
        """
        Persist a new version.

        The version number must be exactly one more than the document's
        current maximum. Content is written before the index so a failure
        leaves no indexed version behind.
        """
        self.get_document(version.document_id)
        self._check_new_version(version)

        self.blob_store.put(version.id, binary_content)

        self._versions[version.id] = version
        try:
            self._save_index()
        except Exception:
            self._versions.pop(version.id, None)
            raise

        self.logger.info(
            f"Stored version {version.label} ({version.id}) for document {version.document_id}"
        )
        return version

    def commit_version(self, version: Version, binary_content: bytes) -> Version:
        """
        Persist a new version and make it the document's current version.

        Both changes reach the index in a single write. If that write fails,
        neither is kept, so the next attempt reuses the same version number.
        """
        document = self.get_document(version.document_id)
        self._check_new_version(version)

        self.blob_store.put(version.id, binary_content)

        previous = document.current_version_id
        self._versions[version.id] = version
        document.current_version_id = version.id
        try:
            self._save_index()
        except Exception:
            self._versions.pop(version.id, None)
            document.current_version_id = previous
            raise

        self.logger.info(
            f"Committed version {version.label} ({version.id}) for document {version.document_id}"
        )
        return version

    def list_by_document(self, document_id: str) -> List[Version]:
        """Versions of a document in ascending version-number order."""
        versions = [v for v in self._versions.values() if v.document_id == document_id]
        versions.sort(key=lambda v: v.version_number)
        return versions

    def get_by_id(self, version_id: str) -> Version:
        """Get a version by id."""
        version = self._versions.get(version_id)
        if version is None:
            raise VersionNotFoundError(version_id)
        return version

    def find_by_number(self, document_id: str, version_number: int) -> Version:
        """Get a document's version by its number."""
        for version in self._versions.values():
            if version.document_id == document_id and version.version_number == version_number:
                return version
        raise VersionNotFoundError(f"{document_id}#{version_number}")

    def get_binary_content(self, version_id: str) -> bytes:
        """Rendered bytes stored for a version."""
        self.get_by_id(version_id)
        return self.blob_store.get(version_id)
