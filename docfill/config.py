# config.py: settings read from the environment
from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from docfill.services.locales import DEFAULT_LOCALE, DEFAULT_TIMEZONE


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    template_dir: str = "doc_templates"
    data_dir: str = "data"
    style_dir: str = "styles"
    output_dir: str = "output"
    locale: str = DEFAULT_LOCALE
    timezone: str = DEFAULT_TIMEZONE
    log_level: str = "INFO"
    pandoc_bin: str = "pandoc"
    pdf_engine: Optional[str] = None
    reference_docx: Optional[str] = None
    validation_retries: int = 3
    retry_delay: float = 1.0
    max_depth: int = 32
    strict: bool = False
    secret_key: str = "dev-secret-change-me"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            template_dir=env.get("DOCFILL_TEMPLATE_DIR", "doc_templates"),
            data_dir=env.get("DOCFILL_DATA_DIR", "data"),
            style_dir=env.get("DOCFILL_STYLE_DIR", "styles"),
            output_dir=env.get("OUTPUT_DIR", "output"),
            locale=env.get("DOCFILL_LOCALE", DEFAULT_LOCALE),
            timezone=env.get("DOCFILL_TIMEZONE", DEFAULT_TIMEZONE),
            log_level=env.get("LOG_LEVEL", "INFO"),
            pandoc_bin=env.get("PANDOC_BIN", "pandoc"),
            pdf_engine=env.get("PDF_ENGINE") or None,
            reference_docx=env.get("REFERENCE_DOCX") or None,
            validation_retries=int(env.get("DOCFILL_VALIDATION_RETRIES", 3)),
            retry_delay=float(env.get("DOCFILL_RETRY_DELAY", 1.0)),
            max_depth=int(env.get("DOCFILL_MAX_DEPTH", 32)),
            strict=_flag(env.get("DOCFILL_STRICT")),
            secret_key=env.get("SECRET_KEY", "dev-secret-change-me"),
        )
