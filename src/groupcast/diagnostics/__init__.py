"""Diagnostics: redaction and structured run events."""

from .events import JsonlEventLogger, build_event, new_run_id, validate_event
from .redact import REDACTED, redact_text, redact_value

__all__ = [
    "JsonlEventLogger",
    "REDACTED",
    "build_event",
    "new_run_id",
    "redact_text",
    "redact_value",
    "validate_event",
]
