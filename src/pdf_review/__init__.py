"""
PDF Review: version control for reviewed PDF documents.

Commits the annotations and page text of a PDF as immutable numbered
versions and compares any two of them.
"""

__version__ = "0.1.0"

from .config import PDFReviewConfig, load_config
from .errors import PDFReviewError
from .version.diff_engine import DiffEngine, DiffReport
from .version.version_control import VersionController
from .version.version_store import VersionStore

__all__ = [
    "PDFReviewConfig",
    "load_config",
    "PDFReviewError",
    "DiffEngine",
    "DiffReport",
    "VersionController",
    "VersionStore",
]
