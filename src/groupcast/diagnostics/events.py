"""Run events appended as JSON lines, redacted before they touch disk."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
import re
import threading
from typing import Any

from groupcast.diagnostics.redact import redact_value
from groupcast.errors import DiagnosticsError

EVENT_SCHEMA_VERSION = "v1"
EVENT_FIELDS = ("schema_version", "event_type", "occurred_at", "run_id", "payload")

_VERSION_RE = re.compile(r"^v?(\d+)(?:[._-]\d+)?$")


class JsonlEventLogger:
    """Append-only event sink shared by the collector thread and the dispatch loop."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(
        self,
        event_type: str,
        *,
        run_id: str,
        payload: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> dict[str, Any]:
        event = build_event(event_type, run_id=run_id, payload=payload, occurred_at=occurred_at)
        line = json.dumps(event, sort_keys=True) + "\n"
        with self._lock, self.path.open("a", encoding="utf-8") as stream:
            stream.write(line)
        return event


def build_event(
    event_type: str,
    *,
    run_id: str,
    payload: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> dict[str, Any]:
    if payload is None:
        payload = {}
    elif not isinstance(payload, dict):
        raise DiagnosticsError(f"Event payload must be a dict, got {type(payload).__name__}.")
    if not event_type.strip():
        raise DiagnosticsError("Event needs a non-blank event_type.")
    if not run_id.strip():
        raise DiagnosticsError("Event needs a non-blank run_id.")

    moment = occurred_at or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    event = dict(
        zip(
            EVENT_FIELDS,
            (EVENT_SCHEMA_VERSION, event_type.strip(), moment.isoformat(), run_id.strip(), redact_value(payload)),
        )
    )
    validate_event(event)
    return event


def validate_event(event: dict[str, Any]) -> None:
    missing = [name for name in EVENT_FIELDS if name not in event]
    if missing:
        raise DiagnosticsError(f"Event is missing field(s): {', '.join(missing)}.")
    found = str(event["schema_version"])
    if _major_version(found) != _major_version(EVENT_SCHEMA_VERSION):
        raise DiagnosticsError(f"Incompatible event schema '{found}'; this build writes '{EVENT_SCHEMA_VERSION}'.")
    if not isinstance(event["payload"], dict):
        raise DiagnosticsError("Event payload must be a JSON object.")


def new_run_id(prefix: str) -> str:
    return f"{prefix}-{datetime.now(timezone.utc):%Y%m%dT%H%M%S%fZ}"


def _major_version(version: str) -> int:
    match = _VERSION_RE.match(version.strip().lower())
    if match is None:
        raise DiagnosticsError(f"Unrecognised event schema version '{version}'.")
    return int(match.group(1))
