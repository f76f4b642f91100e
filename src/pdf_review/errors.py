"""
Exception hierarchy for PDF Review.

Every error raised by the versioning core derives from PDFReviewError so
callers (the CLI in particular) can report failures uniformly.
"""

from __future__ import annotations

from typing import Optional


class PDFReviewError(Exception):
    """Base class for all PDF Review errors."""


class ValidationError(PDFReviewError):
    """Bad caller input, e.g. an empty commit message."""


class IdenticalVersionError(ValidationError):
    """A version was compared against itself."""

    def __init__(self, version_id: str):
        super().__init__(f"Cannot compare version {version_id} with itself")
        self.version_id = version_id


class NotFoundError(PDFReviewError):
    """An id did not resolve."""


class DocumentNotFoundError(NotFoundError):
    """A document id did not resolve."""

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class VersionNotFoundError(NotFoundError):
    """A version id did not resolve."""

    def __init__(self, version_id: str):
        super().__init__(f"Version not found: {version_id}")
        self.version_id = version_id


class SequenceError(PDFReviewError):
    """The dense per-document version numbering would be violated."""


class ExtractionError(PDFReviewError):
    """Exporting content, annotations, or page text from the renderer failed."""

    def __init__(self, message: str, page_index: Optional[int] = None):
        super().__init__(message)
        self.page_index = page_index


class InvalidStateError(PDFReviewError):
    """An operation is not allowed in the current session state."""


class RendererTimeoutError(PDFReviewError):
    """A renderer call did not complete within the configured timeout."""


class DiffTimeoutError(RendererTimeoutError):
    """A diff computation did not complete within the configured timeout."""
