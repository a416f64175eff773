from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sqlite3

import pytest

from groupcast.errors import HandoffError
from groupcast.handoff.mailbox import (
    InMemoryMailbox,
    Migration,
    SQLiteMailbox,
    SQLiteMigrationRunner,
)
from groupcast.models import CandidateEntity, HandoffPayload

COMPLETED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _payload(*ids: str) -> HandoffPayload:
    return HandoffPayload(
        results=tuple(CandidateEntity(id=group_id, name=f"Group {group_id}") for group_id in ids),
        completed_at=COMPLETED,
        run_id="collect-1",
    )


def test_sqlite_mailbox_bootstraps_wal_and_migrations(tmp_path: Path) -> None:
    db_path = tmp_path / "handoff.sqlite3"
    with SQLiteMailbox(db_path) as mailbox:
        assert mailbox.migration_versions() == ("0001_mailbox_schema",)

    conn = sqlite3.connect(db_path)
    try:
        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
    finally:
        conn.close()


def test_sqlite_mailbox_bootstrap_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "handoff.sqlite3"
    SQLiteMailbox(db_path).close()
    with SQLiteMailbox(db_path) as mailbox:
        assert mailbox.migration_versions() == ("0001_mailbox_schema",)


def test_sqlite_mailbox_write_replaces_slot_and_is_visible_to_other_connections(tmp_path: Path) -> None:
    db_path = tmp_path / "handoff.sqlite3"
    with SQLiteMailbox(db_path) as writer, SQLiteMailbox(db_path) as reader:
        writer.write(_payload("111111"))
        writer.write(_payload("222222", "333333"))

        payload = reader.read()
        assert payload is not None
        assert [group.id for group in payload.results] == ["222222", "333333"]
        assert payload.completed_at == COMPLETED
        assert payload.run_id == "collect-1"

        reader.clear()
        assert writer.read() is None


def test_channels_are_independent() -> None:
    mailbox = InMemoryMailbox()
    mailbox.write(_payload("111111"), channel="groups")
    assert mailbox.read(channel="other") is None
    mailbox.clear(channel="other")
    assert mailbox.read(channel="groups") == _payload("111111")


def test_unreadable_payload_raises_handoff_error(tmp_path: Path) -> None:
    db_path = tmp_path / "handoff.sqlite3"
    with SQLiteMailbox(db_path) as mailbox:
        conn = sqlite3.connect(db_path)
        conn.execute(
            "INSERT INTO mailbox (channel, payload, completed_at, written_at) VALUES ('groups', 'nope', 'x', 'y')"
        )
        conn.commit()
        conn.close()
        with pytest.raises(HandoffError, match="unreadable"):
            mailbox.read()


def test_migration_runner_rejects_unordered_versions() -> None:
    with pytest.raises(HandoffError, match="ascending"):
        SQLiteMigrationRunner(
            [Migration(version="0002_b", statements=()), Migration(version="0001_a", statements=())]
        )


def test_failed_migration_is_reported(tmp_path: Path) -> None:
    runner = SQLiteMigrationRunner([Migration(version="0001_broken", statements=("CREATE TABLE (",))])
    with pytest.raises(HandoffError, match="0001_broken"):
        SQLiteMailbox(tmp_path / "broken.sqlite3", migration_runner=runner)
