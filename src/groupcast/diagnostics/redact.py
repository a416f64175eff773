"""Mask session cookies, access tokens, and similar secrets before they reach logs or event files."""

from __future__ import annotations

from collections.abc import Mapping
import re
from typing import Any

REDACTED = "<redacted>"

# any key containing one of these is dropped wholesale
_SECRET_KEY_RE = re.compile(r"storage_state|cookie|token|authorization|password|secret|session|dtsg", re.IGNORECASE)

# group 1 is the label that stays readable; the rest is the secret
_SECRET_TEXT_RES = (
    re.compile(r"(authorization\s*[:=]\s*)bearer\s+[\w.~+/-]+", re.IGNORECASE),
    re.compile(r"(set-cookie\s*[:=]\s*)[^;\n]+", re.IGNORECASE),
    re.compile(r"(\b(?:c_user|xs|datr|access_token|fb_dtsg)\s*=\s*)[^;&\"'\s<>]+", re.IGNORECASE),
    re.compile(r"(\"(?:access_token|fb_dtsg|password|token)\"\s*:\s*)\"[^\"]+\"", re.IGNORECASE),
)


def redact_text(value: str) -> str:
    for pattern in _SECRET_TEXT_RES:
        value = pattern.sub(lambda match: match.group(1) + REDACTED, value)
    return value


def redact_value(value: Any) -> Any:
    """Return a copy of ``value`` with secret keys masked and secret-looking text scrubbed.

    Tuples stay tuples and other sequences come back as lists.
    """
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if _SECRET_KEY_RE.search(str(key)) else redact_value(child)
            for key, child in value.items()
        }
    if isinstance(value, tuple):
        return tuple(map(redact_value, value))
    if isinstance(value, (list, set, frozenset)):
        return [redact_value(child) for child in value]
    return value
