"""
Data model for PDF templates and their field mappings.

Coordinates on a ``FieldDefinition`` are normalized (0-1) with the origin in the
top-left corner, the convention used by the mapping editor. Conversion to PDF
points happens in the renderer.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_FONT_SIZE = 11.0

DataValue = Union[str, int, float, bool, None]
DataRecord = Dict[str, DataValue]


class FieldKind(str, Enum):
    TEXT = "text"
    DATE = "date"
    CHECKBOX = "checkbox"
    SIGNATURE = "signature"


class TextAlign(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class NativeFieldKind(str, Enum):
    """Closed classification of interactive form fields found in a PDF."""

    TEXT = "text"
    CHECKBOX = "checkbox"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NativeField:
    name: str
    kind: NativeFieldKind

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.kind.value}


class FieldDefinition(BaseModel):
    """
    A single binding of a data key to a place on a template page.

    Accepts the mapping editor's camelCase keys (``dataKey``, ``pdfFieldName``,
    ``fontSize``, ``type``) as well as the attribute names, and dumps with the
    editor's keys when ``by_alias=True``.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    kind: FieldKind = Field(..., alias="type")
    data_key: str = Field(..., alias="dataKey", min_length=1)
    page: int = Field(default=0, ge=0, strict=True)
    x: float = Field(..., ge=0, le=1, strict=True, allow_inf_nan=False)
    y: float = Field(..., ge=0, le=1, strict=True, allow_inf_nan=False)
    width: float = Field(..., ge=0, le=1, strict=True, allow_inf_nan=False)
    height: float = Field(..., ge=0, le=1, strict=True, allow_inf_nan=False)
    native_field_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("pdfFieldName", "nativeFieldName", "native_field_name"),
        serialization_alias="pdfFieldName",
    )
    font_size: Optional[float] = Field(default=None, alias="fontSize", gt=0, strict=True, allow_inf_nan=False)
    align: TextAlign = TextAlign.LEFT

    @field_validator("id")
    @classmethod
    def id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("id must not be blank")
        return value

    @field_validator("native_field_name", mode="before")
    @classmethod
    def empty_name_is_unbound(cls, value):
        return value or None

    @field_validator("align", mode="before")
    @classmethod
    def default_align(cls, value):
        return value or TextAlign.LEFT

    @property
    def effective_font_size(self) -> float:
        return float(self.font_size) if self.font_size else DEFAULT_FONT_SIZE

    @property
    def is_textual(self) -> bool:
        return self.kind is not FieldKind.CHECKBOX


@dataclass
class IngestResult:
    page_count: int
    native_fields: List[NativeField] = field(default_factory=list)

    @property
    def has_native_form(self) -> bool:
        return bool(self.native_fields)


def _utcnow() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


@dataclass
class Template:
    """Template metadata as persisted next to the immutable PDF blob."""

    id: str
    name: str
    blob_ref: str
    page_count: int
    description: Optional[str] = None
    category: str = "contract"
    has_native_form: bool = False
    native_field_count: int = 0
    field_mapping: Optional[List[FieldDefinition]] = None
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = _utcnow()
        if not self.updated_at:
            self.updated_at = self.created_at

    @property
    def has_mapping(self) -> bool:
        return self.field_mapping is not None

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def summary(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.category,
            "pageCount": self.page_count,
            "hasAcroForm": self.has_native_form,
            "fieldCount": self.native_field_count,
            "hasMapping": self.has_mapping,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
