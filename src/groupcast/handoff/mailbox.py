"""Single-slot mailboxes: the only cross-context mutable resource."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
import json
from pathlib import Path
import sqlite3
import threading
from typing import Any, Protocol

from groupcast.errors import HandoffError
from groupcast.models import CandidateEntity, HandoffPayload, candidate_to_dict

DEFAULT_CHANNEL = "groups"


class Mailbox(Protocol):
    def write(self, payload: HandoffPayload, *, channel: str = DEFAULT_CHANNEL) -> None:
        """Store payload in the channel slot, replacing any pending payload."""

    def read(self, *, channel: str = DEFAULT_CHANNEL) -> HandoffPayload | None:
        """Return the pending payload without removing it."""

    def clear(self, *, channel: str = DEFAULT_CHANNEL) -> None:
        """Empty the channel slot."""


class InMemoryMailbox:
    """Process-local mailbox guarded by a lock so worker threads can share it."""

    def __init__(self) -> None:
        self._slots: dict[str, HandoffPayload] = {}
        self._lock = threading.Lock()

    def write(self, payload: HandoffPayload, *, channel: str = DEFAULT_CHANNEL) -> None:
        with self._lock:
            self._slots[channel] = payload

    def read(self, *, channel: str = DEFAULT_CHANNEL) -> HandoffPayload | None:
        with self._lock:
            return self._slots.get(channel)

    def clear(self, *, channel: str = DEFAULT_CHANNEL) -> None:
        with self._lock:
            self._slots.pop(channel, None)


@dataclass(frozen=True)
class Migration:
    version: str
    statements: tuple[str, ...]


DEFAULT_MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version="0001_mailbox_schema",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS mailbox (
                channel TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                completed_at TEXT NOT NULL,
                written_at TEXT NOT NULL
            )
            """,
        ),
    ),
)


class SQLiteMigrationRunner:
    """Apply ordered migrations and enforce base pragmas."""

    def __init__(self, migrations: Sequence[Migration] | None = None) -> None:
        self._migrations = tuple(migrations or DEFAULT_MIGRATIONS)
        versions = [migration.version for migration in self._migrations]
        if versions != sorted(versions):
            raise HandoffError("Migrations must be in ascending version order.")
        if len(set(versions)) != len(versions):
            raise HandoffError("Migration versions must be unique.")

    def bootstrap(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        conn.commit()
        applied = set(self.applied_versions(conn))
        for migration in self._migrations:
            if migration.version in applied:
                continue
            try:
                for statement in migration.statements:
                    conn.execute(statement)
                conn.execute(
                    "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (migration.version, _utc_now_iso()),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise HandoffError(f"Failed to apply migration '{migration.version}': {exc}") from exc

    def applied_versions(self, conn: sqlite3.Connection) -> tuple[str, ...]:
        rows = conn.execute("SELECT version FROM schema_migrations ORDER BY version").fetchall()
        return tuple(str(row[0]) for row in rows)


class SQLiteMailbox:
    """Durable mailbox shared by separate processes or threads through one database file.

    Each thread must open its own ``SQLiteMailbox``; connections are not shared.
    """

    def __init__(self, db_path: str | Path, *, migration_runner: SQLiteMigrationRunner | None = None) -> None:
        self._path = Path(db_path)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._path), timeout=5.0)
        except (OSError, sqlite3.Error) as exc:
            raise HandoffError(f"Could not open mailbox database '{self._path}': {exc}") from exc
        self._runner = migration_runner or SQLiteMigrationRunner()
        self._runner.bootstrap(self._conn)

    @property
    def path(self) -> Path:
        return self._path

    def migration_versions(self) -> tuple[str, ...]:
        return self._runner.applied_versions(self._conn)

    def write(self, payload: HandoffPayload, *, channel: str = DEFAULT_CHANNEL) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO mailbox (channel, payload, completed_at, written_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(channel) DO UPDATE SET
                    payload = excluded.payload,
                    completed_at = excluded.completed_at,
                    written_at = excluded.written_at
                """,
                (
                    channel,
                    json.dumps(payload_to_dict(payload), sort_keys=True),
                    _to_utc(payload.completed_at).isoformat(),
                    _utc_now_iso(),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise HandoffError(f"Could not write mailbox channel '{channel}': {exc}") from exc

    def read(self, *, channel: str = DEFAULT_CHANNEL) -> HandoffPayload | None:
        try:
            row = self._conn.execute("SELECT payload FROM mailbox WHERE channel = ?", (channel,)).fetchone()
        except sqlite3.Error as exc:
            raise HandoffError(f"Could not read mailbox channel '{channel}': {exc}") from exc
        if row is None:
            return None
        try:
            return payload_from_dict(json.loads(row[0]))
        except (ValueError, TypeError, KeyError) as exc:
            raise HandoffError(f"Mailbox channel '{channel}' holds an unreadable payload: {exc}") from exc

    def clear(self, *, channel: str = DEFAULT_CHANNEL) -> None:
        try:
            self._conn.execute("DELETE FROM mailbox WHERE channel = ?", (channel,))
            self._conn.commit()
        except sqlite3.Error as exc:
            raise HandoffError(f"Could not clear mailbox channel '{channel}': {exc}") from exc

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> SQLiteMailbox:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        self.close()
        return False


def payload_to_dict(payload: HandoffPayload) -> dict[str, Any]:
    return {
        "results": [candidate_to_dict(candidate) for candidate in payload.results],
        "completed_at": _to_utc(payload.completed_at).isoformat(),
        "run_id": payload.run_id,
    }


def payload_from_dict(data: dict[str, Any]) -> HandoffPayload:
    results = tuple(
        CandidateEntity(id=str(entry["id"]), name=str(entry["name"])) for entry in data["results"]
    )
    completed_at = datetime.fromisoformat(str(data["completed_at"]))
    run_id = data.get("run_id")
    return HandoffPayload(
        results=results,
        completed_at=_to_utc(completed_at),
        run_id=str(run_id) if run_id is not None else None,
    )


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
