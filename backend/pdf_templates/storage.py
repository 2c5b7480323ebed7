"""
Storage collaborator for uploaded templates.

Two backends are provided: a local directory (PDF blobs plus one JSON metadata
file per template) and S3. ``TemplateStore`` sits on top of either backend and
serializes writes per template id so a mapping save is never interleaved with a
concurrent read of the same template.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from botocore.exceptions import ClientError

from .errors import StorageError, TemplateEngineError, TemplateNotFound
from .mapping import mapping_to_list, parse_mapping, validate_mapping
from .models import FieldDefinition, Template

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def template_to_dict(template: Template) -> Dict:
    return {
        "id": template.id,
        "name": template.name,
        "description": template.description,
        "category": template.category,
        "blob_ref": template.blob_ref,
        "page_count": template.page_count,
        "has_native_form": template.has_native_form,
        "native_field_count": template.native_field_count,
        "field_mapping": mapping_to_list(template.field_mapping) if template.has_mapping else None,
        "created_at": template.created_at,
        "updated_at": template.updated_at,
    }


def template_from_dict(data: Dict) -> Template:
    raw_mapping = data.get("field_mapping")
    return Template(
        id=data["id"],
        name=data["name"],
        blob_ref=data["blob_ref"],
        page_count=int(data["page_count"]),
        description=data.get("description"),
        category=data.get("category") or "contract",
        has_native_form=bool(data.get("has_native_form")),
        native_field_count=int(data.get("native_field_count") or 0),
        field_mapping=parse_mapping(raw_mapping, template_id=data["id"]) if raw_mapping is not None else None,
        created_at=data.get("created_at", ""),
        updated_at=data.get("updated_at", ""),
    )


class TemplateStorage:
    """Interface every storage backend implements."""

    def put_blob(self, pdf_bytes: bytes) -> str:
        raise NotImplementedError

    def get_blob(self, blob_ref: str) -> bytes:
        raise NotImplementedError

    def delete_blob(self, blob_ref: str) -> None:
        raise NotImplementedError

    def put_metadata(self, template: Template) -> None:
        raise NotImplementedError

    def get_metadata(self, template_id: str) -> Template:
        raise NotImplementedError

    def delete_metadata(self, template_id: str) -> None:
        raise NotImplementedError

    def list_metadata(self) -> List[Template]:
        raise NotImplementedError


class LocalTemplateStorage(TemplateStorage):
    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.blobs_dir = self.base_dir / "pdf_templates"
        self.metadata_dir = self.base_dir / "templates"
        self.blobs_dir.mkdir(parents=True, exist_ok=True)
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

    def _blob_path(self, blob_ref: str) -> Path:
        if not blob_ref.endswith(".pdf") or not _SAFE_ID.match(blob_ref[:-4]):
            raise StorageError(f"Invalid blob reference '{blob_ref}'")
        return self.blobs_dir / blob_ref

    def _metadata_path(self, template_id: str) -> Path:
        if not _SAFE_ID.match(template_id or ""):
            raise TemplateNotFound(template_id)
        return self.metadata_dir / f"{template_id}.json"

    def put_blob(self, pdf_bytes: bytes) -> str:
        blob_ref = f"{uuid.uuid4().hex}.pdf"
        with self._blob_path(blob_ref).open("wb") as f:
            f.write(pdf_bytes)
        return blob_ref

    def get_blob(self, blob_ref: str) -> bytes:
        path = self._blob_path(blob_ref)
        try:
            with path.open("rb") as f:
                return f.read()
        except FileNotFoundError as exc:
            raise StorageError(f"Blob '{blob_ref}' is missing from {self.blobs_dir}") from exc

    def delete_blob(self, blob_ref: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._blob_path(blob_ref).unlink()

    def put_metadata(self, template: Template) -> None:
        target = self._metadata_path(template.id)
        # write-then-rename keeps readers from seeing a half-written file
        fd, tmp_name = tempfile.mkstemp(dir=self.metadata_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(template_to_dict(template), f, indent=2)
            os.replace(tmp_name, target)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise

    def get_metadata(self, template_id: str) -> Template:
        path = self._metadata_path(template_id)
        try:
            with path.open("r", encoding="utf-8") as f:
                return template_from_dict(json.load(f))
        except FileNotFoundError:
            raise TemplateNotFound(template_id) from None

    def delete_metadata(self, template_id: str) -> None:
        path = self._metadata_path(template_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise TemplateNotFound(template_id) from None

    def list_metadata(self) -> List[Template]:
        results = []
        for metadata_file in self.metadata_dir.glob("*.json"):
            try:
                with metadata_file.open("r", encoding="utf-8") as f:
                    results.append(template_from_dict(json.load(f)))
            except (ValueError, KeyError, TemplateEngineError) as exc:
                logger.error("Skipping malformed template metadata %s: %s", metadata_file.name, exc)
        return results


class S3TemplateStorage(TemplateStorage):
    def __init__(self, bucket: str, prefix: str = "pdf-templates/", s3_client=None):
        self.bucket = bucket
        self.prefix = prefix if prefix.endswith("/") or not prefix else f"{prefix}/"
        if s3_client is None:
            import boto3

            s3_client = boto3.client("s3")
        self.s3 = s3_client

    def _blob_key(self, blob_ref: str) -> str:
        return f"{self.prefix}blobs/{blob_ref}"

    def _metadata_key(self, template_id: str) -> str:
        if not _SAFE_ID.match(template_id or ""):
            raise TemplateNotFound(template_id)
        return f"{self.prefix}metadata/{template_id}.json"

    @staticmethod
    def _is_missing(exc: ClientError) -> bool:
        return exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404", "NotFound")

    def _read(self, key: str) -> bytes:
        obj = self.s3.get_object(Bucket=self.bucket, Key=key)
        body = obj["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def put_blob(self, pdf_bytes: bytes) -> str:
        blob_ref = f"{uuid.uuid4().hex}.pdf"
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self._blob_key(blob_ref),
            Body=pdf_bytes,
            ContentType="application/pdf",
        )
        return blob_ref

    def get_blob(self, blob_ref: str) -> bytes:
        try:
            return self._read(self._blob_key(blob_ref))
        except ClientError as exc:
            raise StorageError(f"Could not read blob '{blob_ref}': {exc}") from exc

    def delete_blob(self, blob_ref: str) -> None:
        self.s3.delete_object(Bucket=self.bucket, Key=self._blob_key(blob_ref))

    def put_metadata(self, template: Template) -> None:
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self._metadata_key(template.id),
            Body=json.dumps(template_to_dict(template), indent=2).encode("utf-8"),
            ContentType="application/json",
        )

    def get_metadata(self, template_id: str) -> Template:
        try:
            raw = self._read(self._metadata_key(template_id))
        except ClientError as exc:
            if self._is_missing(exc):
                raise TemplateNotFound(template_id) from None
            raise StorageError(f"Could not read metadata for '{template_id}': {exc}") from exc
        return template_from_dict(json.loads(raw.decode("utf-8")))

    def delete_metadata(self, template_id: str) -> None:
        self.get_metadata(template_id)
        self.s3.delete_object(Bucket=self.bucket, Key=self._metadata_key(template_id))

    def list_metadata(self) -> List[Template]:
        results = []
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{self.prefix}metadata/"):
            for item in page.get("Contents", []):
                if not item["Key"].endswith(".json"):
                    continue
                raw = self._read(item["Key"])
                try:
                    results.append(template_from_dict(json.loads(raw.decode("utf-8"))))
                except (ValueError, KeyError, TemplateEngineError) as exc:
                    logger.error("Skipping malformed template metadata %s: %s", item["Key"], exc)
        return results


class TemplateStore:
    """Template lookup and mutation with one lock per template id."""

    def __init__(self, storage: TemplateStorage):
        self.storage = storage
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @contextlib.contextmanager
    def locked(self, template_id: str) -> Iterator[None]:
        with self._registry_lock:
            lock = self._locks.setdefault(template_id, threading.Lock())
        try:
            with lock:
                yield
        except TemplateNotFound:
            # unknown ids must not leave a lock behind
            self._forget(template_id)
            raise

    def _forget(self, template_id: str) -> None:
        with self._registry_lock:
            self._locks.pop(template_id, None)

    def add(self, pdf_bytes: bytes, build: Callable[[str], Template]) -> Template:
        blob_ref = self.storage.put_blob(pdf_bytes)
        template = build(blob_ref)
        try:
            with self.locked(template.id):
                self.storage.put_metadata(template)
        except Exception:
            self.storage.delete_blob(blob_ref)
            raise
        return template

    def get(self, template_id: str) -> Template:
        with self.locked(template_id):
            return self.storage.get_metadata(template_id)

    def read_blob(self, template: Template) -> bytes:
        return self.storage.get_blob(template.blob_ref)

    def replace_mapping(self, template_id: str, definitions: Sequence[FieldDefinition]) -> Template:
        with self.locked(template_id):
            template = self.storage.get_metadata(template_id)
            validate_mapping(definitions, template.page_count, template_id=template_id)
            template.field_mapping = list(definitions)
            template.touch()
            self.storage.put_metadata(template)
            return template

    def delete(self, template_id: str) -> Template:
        with self.locked(template_id):
            template = self.storage.get_metadata(template_id)
            self.storage.delete_metadata(template_id)
            self.storage.delete_blob(template.blob_ref)
        self._forget(template_id)
        return template

    def list(self) -> List[Template]:
        templates = self.storage.list_metadata()
        return sorted(templates, key=lambda t: t.created_at, reverse=True)


def build_storage(base_dir: Path, s3_bucket: Optional[str] = None, s3_prefix: str = "pdf-templates/", s3_client=None) -> TemplateStorage:
    if s3_bucket:
        logger.info("Using S3 template storage s3://%s/%s", s3_bucket, s3_prefix)
        return S3TemplateStorage(s3_bucket, prefix=s3_prefix, s3_client=s3_client)
    logger.info("Using local template storage at %s", base_dir)
    return LocalTemplateStorage(base_dir)
