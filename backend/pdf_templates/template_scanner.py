"""
PDF Template Scanner

Opens uploaded PDF bytes, counts pages and lists the interactive form fields
together with their kind.
"""

import io
import logging
from typing import Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError
from pypdf.generic import DictionaryObject

from .errors import InvalidDocument
from .models import IngestResult, NativeField, NativeFieldKind

logger = logging.getLogger(__name__)

# /Ff bit positions for button fields (PDF 32000-1, table 226)
FF_RADIO = 1 << 15
FF_PUSHBUTTON = 1 << 16


def classify_field(field_type: Optional[str], flags: int) -> NativeFieldKind:
    """Map a field's /FT and /Ff values onto the closed ``NativeFieldKind`` set."""
    if field_type == "/Tx":
        return NativeFieldKind.TEXT
    if field_type == "/Btn" and not flags & (FF_RADIO | FF_PUSHBUTTON):
        return NativeFieldKind.CHECKBOX
    return NativeFieldKind.UNKNOWN


def open_pdf(pdf_bytes: bytes) -> PdfReader:
    if not pdf_bytes:
        raise InvalidDocument("Uploaded file is empty")
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes), strict=False)
        if reader.is_encrypted and not reader.decrypt(""):
            raise InvalidDocument("PDF is encrypted and cannot be opened")
        page_count = len(reader.pages)
    except InvalidDocument:
        raise
    except (PdfReadError, ValueError, KeyError, TypeError, IndexError, AttributeError) as exc:
        raise InvalidDocument(f"File is not a valid PDF: {exc}") from exc
    if page_count == 0:
        raise InvalidDocument("PDF has no pages")
    return reader


class TemplateScanner:
    """Discovers page count and native form fields of a PDF template"""

    def ingest(self, pdf_bytes: bytes) -> IngestResult:
        reader = open_pdf(pdf_bytes)
        fields = self.scan_form_fields(reader)
        logger.info("Scanned template: %d pages, %d form fields", len(reader.pages), len(fields))
        return IngestResult(page_count=len(reader.pages), native_fields=fields)

    def scan_form_fields(self, reader: PdfReader) -> List[NativeField]:
        root = reader.trailer.get("/Root")
        if root is None:
            return []
        root = root.get_object()
        if "/AcroForm" not in root:
            return []

        acro_form = root["/AcroForm"].get_object()
        if "/Fields" not in acro_form:
            return []

        found: Dict[str, NativeField] = {}
        visited = set()

        def extract_field_info(field_ref, parent_name: str, inherited_type: Optional[str], inherited_flags: int):
            """Recursively walk the field tree, inheriting /FT and /Ff"""
            field_obj = field_ref.get_object()
            if not isinstance(field_obj, DictionaryObject) or id(field_obj) in visited:
                return
            visited.add(id(field_obj))

            partial = field_obj["/T"] if "/T" in field_obj else None
            name = parent_name
            if partial is not None:
                name = f"{parent_name}.{partial}" if parent_name else str(partial)

            field_type = field_obj["/FT"] if "/FT" in field_obj else inherited_type
            flags = int(field_obj["/Ff"]) if "/Ff" in field_obj else inherited_flags

            kids = field_obj["/Kids"] if "/Kids" in field_obj else []
            named_kids = []
            for kid_ref in kids:
                kid = kid_ref.get_object()
                if isinstance(kid, DictionaryObject) and "/T" in kid:
                    named_kids.append(kid_ref)

            if named_kids:
                for kid_ref in named_kids:
                    extract_field_info(kid_ref, name, field_type, flags)
                return

            # terminal field; widget-only kids share this name
            if name and name not in found:
                found[name] = NativeField(name=name, kind=classify_field(field_type, flags))

        try:
            for field_ref in acro_form["/Fields"]:
                extract_field_info(field_ref, "", None, 0)
        except (PdfReadError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Malformed form field tree, reporting %d fields found so far: %s", len(found), exc)

        return list(found.values())
