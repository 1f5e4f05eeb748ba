# errors.py: exception taxonomy for docfill
from __future__ import annotations
from typing import Any, Dict, Optional


class DocfillError(Exception):
    """Base error. ``code`` is stable for callers; ``details`` is free-form context."""

    code = "DOCFILL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}

    def __str__(self) -> str:
        return self.message


class InvalidPathError(DocfillError, ValueError):
    code = "INVALID_PATH"


class InvalidDataStructureError(DocfillError):
    code = "INVALID_DATA_STRUCTURE"


class ValidationError(DocfillError):
    code = "VALIDATION_ERROR"


class ProcessingError(DocfillError):
    code = "PROCESSING_ERROR"


class OutputError(DocfillError):
    code = "OUTPUT_ERROR"


class FormattingError(DocfillError, ValueError):
    """Soft failure of a formatting helper; ``message`` is the in-document placeholder."""

    code = "FORMATTING_ERROR"


def format_error(error: BaseException) -> str:
    if isinstance(error, DocfillError):
        stage = error.details.get("stage")
        prefix = f"{error.code}" + (f" [{stage}]" if stage else "")
        return f"{prefix}: {error.message}"
    return str(error)
