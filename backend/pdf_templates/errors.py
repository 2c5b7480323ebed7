"""
Exception hierarchy for the PDF template engine.

The HTTP layer translates these into status codes: ``TemplateNotFound`` maps to
404, ``InvalidDocument`` and ``InvalidMapping`` map to 400.
"""

from __future__ import annotations

from typing import Optional


class TemplateEngineError(RuntimeError):
    """Domain-specific base exception for template engine errors."""

    def __init__(self, message: str, template_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.template_id = template_id

    def __str__(self) -> str:
        if self.template_id:
            return f"{self.message} (template {self.template_id})"
        return self.message


class InvalidDocument(TemplateEngineError):
    """The bytes are not a usable PDF, or a referenced page does not exist."""


class InvalidMapping(TemplateEngineError):
    """A field definition violates a mapping invariant at save time."""

    def __init__(
        self,
        message: str,
        template_id: Optional[str] = None,
        definition_id: Optional[str] = None,
    ):
        super().__init__(message, template_id=template_id)
        self.definition_id = definition_id

    def __str__(self) -> str:
        text = super().__str__()
        if self.definition_id:
            return f"{text} [field '{self.definition_id}']"
        return text


class TemplateNotFound(TemplateEngineError):
    def __init__(self, template_id: str):
        super().__init__(f"Template '{template_id}' not found", template_id=None)
        self.template_id = template_id

    def __str__(self) -> str:
        return self.message


class StorageError(TemplateEngineError):
    """Backend I/O failure other than a missing key."""
