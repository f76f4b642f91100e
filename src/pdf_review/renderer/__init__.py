"""
Document renderer contract and implementations.
"""

from .base import CapturedState, Renderer, RendererBridge
from .pdf_renderer import PdfFileRenderer, looks_like_pdf

__all__ = ["CapturedState", "Renderer", "RendererBridge", "PdfFileRenderer", "looks_like_pdf"]
