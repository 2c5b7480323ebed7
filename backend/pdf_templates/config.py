"""Environment-driven settings for the template engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    s3_bucket: Optional[str] = None
    s3_prefix: str = "pdf-templates/"
    max_upload_mb: int = 10
    field_cache_size: int = 256
    field_cache_ttl: int = 3600
    log_level: str = "INFO"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            base_dir=Path(
                os.getenv("PDF_TEMPLATES_BASE_DIR")
                or Path(__file__).resolve().parent / "storage"
            ),
            s3_bucket=os.getenv("PDF_TEMPLATES_S3_BUCKET") or None,
            s3_prefix=os.getenv("PDF_TEMPLATES_S3_PREFIX", "pdf-templates/"),
            max_upload_mb=int(os.getenv("PDF_TEMPLATES_MAX_UPLOAD_MB", "10")),
            field_cache_size=int(os.getenv("PDF_TEMPLATES_FIELD_CACHE_SIZE", "256")),
            field_cache_ttl=int(os.getenv("PDF_TEMPLATES_FIELD_CACHE_TTL", "3600")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
