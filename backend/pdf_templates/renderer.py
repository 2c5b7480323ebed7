"""
Rendering pipeline that merges a data record into a PDF template.

Steps, in order: fill bound native form fields, flatten the form so nothing is
editable, then draw a freeform overlay at the rectangle of every definition
whose data key is present. Overlays are drawn after flattening so their ink
sits on top of the baked form appearance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from .errors import InvalidDocument
from .models import DataRecord, FieldDefinition, FieldKind, NativeFieldKind
from .pdf_utils import (
    CHECK_FONT,
    CHECK_GLYPH,
    SIGNATURE_COLOR,
    TEXT_COLOR,
    TEXT_FONT,
    TEXT_PADDING,
    Box,
    Measure,
    aligned_x,
    box_from_normalized,
    fit_font_size,
    is_truthy,
    measure_text,
    stringify,
)

logger = logging.getLogger(__name__)

_WIDGET_KINDS = {
    fitz.PDF_WIDGET_TYPE_TEXT: NativeFieldKind.TEXT,
    fitz.PDF_WIDGET_TYPE_CHECKBOX: NativeFieldKind.CHECKBOX,
}


@dataclass
class OverlayPlacement:
    definition_id: str
    page: int
    text: str
    font_size: float
    x: float
    baseline_y: float
    fontname: str = TEXT_FONT
    color: Tuple[float, float, float] = TEXT_COLOR


@dataclass
class RenderReport:
    native_filled: List[str] = field(default_factory=list)
    native_skipped: List[str] = field(default_factory=list)
    overlays: List[OverlayPlacement] = field(default_factory=list)
    flattened: bool = True

    def overlay_for(self, definition_id: str) -> Optional[OverlayPlacement]:
        for placement in self.overlays:
            if placement.definition_id == definition_id:
                return placement
        return None


@dataclass
class RenderResult:
    pdf_bytes: bytes
    report: RenderReport


@dataclass
class NativeFormIndex:
    """Widget names of a loaded document, with their kind resolved once."""

    kinds: Dict[str, NativeFieldKind] = field(default_factory=dict)
    pages: Dict[str, List[int]] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: fitz.Document) -> "NativeFormIndex":
        index = cls()
        for page in doc:
            for widget in page.widgets() or []:
                name = widget.field_name
                if not name:
                    continue
                index.kinds.setdefault(name, _WIDGET_KINDS.get(widget.field_type, NativeFieldKind.UNKNOWN))
                pages = index.pages.setdefault(name, [])
                if page.number not in pages:
                    pages.append(page.number)
        return index

    def __contains__(self, name: str) -> bool:
        return name in self.kinds

    def __bool__(self) -> bool:
        return bool(self.kinds)


def has_value(data: DataRecord, key: str) -> bool:
    return key in data and data[key] is not None


def open_document(pdf_bytes: bytes) -> fitz.Document:
    if not pdf_bytes:
        raise InvalidDocument("Template file is empty")
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except (fitz.FileDataError, RuntimeError, ValueError) as exc:
        raise InvalidDocument(f"File is not a valid PDF: {exc}") from exc
    if doc.needs_pass and not doc.authenticate(""):
        doc.close()
        raise InvalidDocument("PDF is encrypted and cannot be opened")
    if doc.page_count == 0:
        doc.close()
        raise InvalidDocument("PDF has no pages")
    return doc


class RenderEngine:
    def __init__(self, measure: Measure = measure_text):
        self.measure = measure

    def render(self, template_bytes: bytes, mapping: Sequence[FieldDefinition], data: DataRecord) -> bytes:
        return self.render_report(template_bytes, mapping, data).pdf_bytes

    def render_report(
        self, template_bytes: bytes, mapping: Sequence[FieldDefinition], data: DataRecord
    ) -> RenderResult:
        report = RenderReport()
        with open_document(template_bytes) as doc:
            self.fill_native_fields(doc, mapping, data, report)
            report.flattened = self.flatten(doc)
            present = [d for d in mapping if has_value(data, d.data_key)]
            self.draw_overlays(doc, present, data, report)
            pdf_bytes = doc.tobytes(garbage=3, deflate=True)

        logger.info(
            "Rendered template: %d native fields, %d overlays, %d native skips",
            len(report.native_filled),
            len(report.overlays),
            len(report.native_skipped),
        )
        return RenderResult(pdf_bytes=pdf_bytes, report=report)

    # ------------------------------------------------------------------
    # Native form pass
    # ------------------------------------------------------------------
    def fill_native_fields(
        self,
        doc: fitz.Document,
        mapping: Sequence[FieldDefinition],
        data: DataRecord,
        report: RenderReport,
    ) -> None:
        """Fill bound native fields, recording fills and skips on the report."""
        index = NativeFormIndex.from_document(doc)

        for definition in mapping:
            if not has_value(data, definition.data_key):
                continue
            if not definition.native_field_name:
                continue

            name = definition.native_field_name
            if name not in index:
                logger.warning(
                    "Native field '%s' for definition '%s' not found in form",
                    name,
                    definition.id,
                )
                report.native_skipped.append(definition.id)
                continue

            if self._fill_widgets(doc, index, definition, data[definition.data_key]):
                report.native_filled.append(definition.id)
            else:
                report.native_skipped.append(definition.id)

    def _fill_widgets(self, doc: fitz.Document, index: NativeFormIndex, definition: FieldDefinition, value) -> bool:
        name = definition.native_field_name
        native_kind = index.kinds[name]

        if definition.kind is FieldKind.CHECKBOX and native_kind is NativeFieldKind.TEXT:
            logger.warning("Definition '%s' is a checkbox but '%s' is a text field", definition.id, name)
            return False
        if definition.is_textual and native_kind is NativeFieldKind.CHECKBOX:
            logger.warning("Definition '%s' is textual but '%s' is a checkbox", definition.id, name)
            return False

        filled = False
        try:
            for page_number in index.pages[name]:
                page = doc[page_number]
                for widget in page.widgets() or []:
                    if widget.field_name != name:
                        continue
                    if definition.kind is FieldKind.CHECKBOX:
                        checked = is_truthy(value)
                        widget.field_value = (widget.on_state() or True) if checked else "Off"
                    else:
                        widget.field_value = stringify(value)
                    widget.update()
                    filled = True
        except Exception as exc:
            logger.warning("Failed to fill native field '%s' (definition '%s'): %s", name, definition.id, exc)
            return False
        return filled

    # ------------------------------------------------------------------
    # Flatten
    # ------------------------------------------------------------------
    def flatten(self, doc: fitz.Document) -> bool:
        """Bake every widget into page content. No widgets means nothing to do."""
        if not any(page.first_widget for page in doc):
            return True
        try:
            doc.bake(annots=False, widgets=True)
        except Exception as exc:
            logger.warning("Could not flatten form, output stays editable: %s", exc, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Freeform overlay pass
    # ------------------------------------------------------------------
    def draw_overlays(
        self,
        doc: fitz.Document,
        definitions: Sequence[FieldDefinition],
        data: DataRecord,
        report: RenderReport,
    ) -> None:
        for definition in definitions:
            if definition.page < 0 or definition.page >= doc.page_count:
                raise InvalidDocument(
                    f"Field '{definition.id}' references page {definition.page}, "
                    f"document has {doc.page_count} pages"
                )
            page = doc[definition.page]
            placement = self.place(definition, data[definition.data_key], page.rect.width, page.rect.height)
            if placement is None:
                continue

            page.insert_text(
                fitz.Point(placement.x, page.rect.height - placement.baseline_y),
                placement.text,
                fontsize=placement.font_size,
                fontname=placement.fontname,
                color=placement.color,
            )
            report.overlays.append(placement)

    def place(
        self, definition: FieldDefinition, value, page_width: float, page_height: float
    ) -> Optional[OverlayPlacement]:
        """Compute where and how large a value is drawn, in bottom-origin points."""
        box = box_from_normalized(
            definition.x, definition.y, definition.width, definition.height, page_width, page_height
        )

        if definition.kind is FieldKind.CHECKBOX:
            if not is_truthy(value):
                return None
            size = definition.effective_font_size + 2
            return OverlayPlacement(
                definition_id=definition.id,
                page=definition.page,
                text=CHECK_GLYPH,
                font_size=size,
                x=box.left + TEXT_PADDING,
                baseline_y=box.baseline(definition.effective_font_size),
                fontname=CHECK_FONT,
            )

        text = stringify(value)
        if not text:
            return None
        return self._place_text(definition, text, box)

    def _place_text(self, definition: FieldDefinition, text: str, box: Box) -> OverlayPlacement:
        size = fit_font_size(text, box.width, definition.effective_font_size, measure=self.measure)
        width = self.measure(text, size)
        color = SIGNATURE_COLOR if definition.kind is FieldKind.SIGNATURE else TEXT_COLOR
        return OverlayPlacement(
            definition_id=definition.id,
            page=definition.page,
            text=text,
            font_size=size,
            x=aligned_x(box, width, definition.align),
            baseline_y=box.baseline(size),
            color=color,
        )
