"""Result handoff between the collector and the consumer."""

from .mailbox import (
    DEFAULT_CHANNEL,
    DEFAULT_MIGRATIONS,
    InMemoryMailbox,
    Mailbox,
    Migration,
    SQLiteMailbox,
    SQLiteMigrationRunner,
)
from .protocol import (
    NO_GROUPS_ERROR,
    TIMEOUT_ERROR,
    PollOutcome,
    PollStatus,
    PollStep,
    ResultPoller,
    WakeableWait,
    publish_results,
)

__all__ = [
    "DEFAULT_CHANNEL",
    "DEFAULT_MIGRATIONS",
    "InMemoryMailbox",
    "Mailbox",
    "Migration",
    "NO_GROUPS_ERROR",
    "PollOutcome",
    "PollStatus",
    "PollStep",
    "ResultPoller",
    "SQLiteMailbox",
    "SQLiteMigrationRunner",
    "TIMEOUT_ERROR",
    "WakeableWait",
    "publish_results",
]
