"""
High-level service that exposes the template engine to the FastAPI layer.

Responsibilities
----------------
* ingest uploaded PDFs and persist them with their metadata
* report the native form fields of a template
* replace and read field mappings
* render filled, flattened PDFs from a template and a data record
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from cachetools import TTLCache

from .config import Settings
from .errors import TemplateEngineError
from .mapping import parse_mapping
from .models import DataRecord, FieldDefinition, NativeField, Template
from .renderer import RenderEngine, RenderResult
from .storage import TemplateStorage, TemplateStore, build_storage
from .template_scanner import TemplateScanner

logger = logging.getLogger(__name__)

DefinitionsInput = Union[Sequence[FieldDefinition], Iterable[Mapping]]


class TemplateService:
    def __init__(
        self,
        storage: TemplateStorage,
        scanner: Optional[TemplateScanner] = None,
        engine: Optional[RenderEngine] = None,
        field_cache_size: int = 256,
        field_cache_ttl: int = 3600,
    ):
        self.store = TemplateStore(storage)
        self.scanner = scanner or TemplateScanner()
        self.engine = engine or RenderEngine()
        # blobs never change after upload, so inventories can be cached by id
        self._field_cache: TTLCache = TTLCache(maxsize=field_cache_size, ttl=field_cache_ttl)
        self._cache_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, s3_client=None) -> "TemplateService":
        storage = build_storage(
            settings.base_dir,
            s3_bucket=settings.s3_bucket,
            s3_prefix=settings.s3_prefix,
            s3_client=s3_client,
        )
        return cls(
            storage,
            field_cache_size=settings.field_cache_size,
            field_cache_ttl=settings.field_cache_ttl,
        )

    # ------------------------------------------------------------------
    # Upload + inventory
    # ------------------------------------------------------------------
    def upload_template(
        self,
        pdf_bytes: bytes,
        name: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Template:
        scan = self.scanner.ingest(pdf_bytes)

        def build(blob_ref: str) -> Template:
            return Template(
                id=uuid.uuid4().hex,
                name=name,
                description=description,
                category=category or "contract",
                blob_ref=blob_ref,
                page_count=scan.page_count,
                has_native_form=scan.has_native_form,
                native_field_count=len(scan.native_fields),
            )

        template = self.store.add(pdf_bytes, build)
        with self._cache_lock:
            self._field_cache[template.id] = list(scan.native_fields)
        logger.info(
            "Uploaded template %s '%s' (%d pages, %d native fields)",
            template.id,
            name,
            template.page_count,
            template.native_field_count,
        )
        return template

    def list_fields(self, template_id: str) -> List[NativeField]:
        with self._cache_lock:
            cached = self._field_cache.get(template_id)
        if cached is not None:
            return list(cached)

        template = self.store.get(template_id)
        fields = self.scanner.ingest(self.store.read_blob(template)).native_fields
        with self._cache_lock:
            self._field_cache[template_id] = list(fields)
        return fields

    def list_templates(self) -> List[Template]:
        return self.store.list()

    def get_template(self, template_id: str) -> Template:
        return self.store.get(template_id)

    def download_template(self, template_id: str) -> Tuple[bytes, str]:
        template = self.store.get(template_id)
        return self.store.read_blob(template), template.name

    def delete_template(self, template_id: str) -> None:
        self.store.delete(template_id)
        with self._cache_lock:
            self._field_cache.pop(template_id, None)
        logger.info("Deleted template %s", template_id)

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------
    def save_mapping(self, template_id: str, definitions: DefinitionsInput) -> int:
        """Replace the template's mapping; returns the number of saved fields."""
        definitions = parse_mapping(definitions, template_id=template_id)
        template = self.store.replace_mapping(template_id, definitions)
        logger.info("Saved mapping for template %s (%d fields)", template_id, len(definitions))
        return len(template.field_mapping or [])

    def get_mapping(self, template_id: str) -> List[FieldDefinition]:
        return list(self.store.get(template_id).field_mapping or [])

    # ------------------------------------------------------------------
    # PDF generation
    # ------------------------------------------------------------------
    def generate(self, template_id: str, data: DataRecord) -> bytes:
        return self.generate_report(template_id, data).pdf_bytes

    def generate_report(self, template_id: str, data: DataRecord) -> RenderResult:
        template = self.store.get(template_id)
        mapping = template.field_mapping or []
        if not mapping:
            logger.warning("Template %s has no field mapping; output is the flattened template", template_id)

        pdf_bytes = self.store.read_blob(template)
        try:
            return self.engine.render_report(pdf_bytes, mapping, data)
        except TemplateEngineError as exc:
            if exc.template_id is None:
                exc.template_id = template_id
            raise
