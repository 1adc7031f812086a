"""Rendering module for presentation concerns.

This module handles all presentation/rendering logic:
- Certificate template compilation and rendering
- HTML to PDF / PNG conversion through pooled headless browsers

This separates presentation concerns from business logic in services.
"""

from rendering.default_templates import DEFAULT_TEMPLATES
from rendering.pdf_renderer import BrowserPool, PDFRenderer, PDFRenderError
from rendering.template_engine import TemplateEngine, TemplateRenderError

__all__ = [
    "BrowserPool",
    "DEFAULT_TEMPLATES",
    "PDFRenderError",
    "PDFRenderer",
    "TemplateEngine",
    "TemplateRenderError",
]
