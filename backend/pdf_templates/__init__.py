"""
PDF template engine for the sales-operations backend.

This package bundles:
  - template ingestion (page count and native form field discovery)
  - field-mapping validation and persistence
  - rendering of filled, flattened PDFs from a template and a data record
"""

from .errors import InvalidDocument, InvalidMapping, TemplateEngineError, TemplateNotFound
from .service import TemplateService

__all__ = [
    "TemplateService",
    "TemplateEngineError",
    "InvalidDocument",
    "InvalidMapping",
    "TemplateNotFound",
]
