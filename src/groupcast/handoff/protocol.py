"""Result handoff: durable mailbox write, best-effort notification, consumer-side polling."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import threading
import time

from groupcast.errors import HandoffError
from groupcast.handoff.mailbox import DEFAULT_CHANNEL, Mailbox
from groupcast.logging import get_logger
from groupcast.messages import GroupsCollected
from groupcast.models import CandidateEntity, HandoffPayload

logger = get_logger(__name__)

TIMEOUT_ERROR = "Timeout - try again"
NO_GROUPS_ERROR = "No groups found on the listing page."

NotifyFn = Callable[[GroupsCollected], None]
WaitFn = Callable[[float], None]
DeliverFn = Callable[["PollOutcome"], None]
AbortFn = Callable[[], "str | None"]


class PollStatus(str, Enum):
    DELIVERED = "delivered"
    STALE = "stale"
    EMPTY = "empty"


@dataclass(frozen=True)
class PollStep:
    status: PollStatus
    payload: HandoffPayload | None = None


@dataclass(frozen=True)
class PollOutcome:
    groups: tuple[CandidateEntity, ...]
    error: str | None
    polls: int
    timed_out: bool = False
    completed_at: datetime | None = None


def publish_results(
    mailbox: Mailbox,
    payload: HandoffPayload,
    *,
    notify: NotifyFn | None = None,
    channel: str = DEFAULT_CHANNEL,
) -> bool:
    """Write payload to the mailbox, then try the direct channel. Return True if notify succeeded."""
    mailbox.write(payload, channel=channel)
    if notify is None:
        return False
    try:
        notify(GroupsCollected(groups=payload.results, completed_at=payload.completed_at, run_id=payload.run_id))
    except Exception as exc:
        logger.info("Direct result notification failed (mailbox copy kept): %s", exc)
        return False
    return True


class ResultPoller:
    """Consumer-side wait for a fresh handoff payload.

    Independent of the storage transport: anything satisfying ``Mailbox`` works.
    A payload completed at or before ``requested_at`` is stale and never delivered;
    a fresh payload is delivered once and the slot is cleared.
    """

    def __init__(
        self,
        mailbox: Mailbox,
        *,
        interval_seconds: float = 2.0,
        max_polls: int = 90,
        channel: str = DEFAULT_CHANNEL,
        wait_fn: WaitFn | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise HandoffError("interval_seconds must be > 0.")
        if max_polls <= 0:
            raise HandoffError("max_polls must be > 0.")
        self._mailbox = mailbox
        self._interval = interval_seconds
        self._max_polls = max_polls
        self._channel = channel
        self._wait = wait_fn or time.sleep

    @property
    def max_polls(self) -> int:
        return self._max_polls

    def poll_once(self, requested_at: datetime) -> PollStep:
        payload = self._mailbox.read(channel=self._channel)
        if payload is None:
            return PollStep(status=PollStatus.EMPTY)
        if _to_utc(payload.completed_at) <= _to_utc(requested_at):
            return PollStep(status=PollStatus.STALE, payload=payload)
        self._mailbox.clear(channel=self._channel)
        return PollStep(status=PollStatus.DELIVERED, payload=payload)

    def wait_for_results(
        self,
        requested_at: datetime,
        deliver: DeliverFn | None = None,
        *,
        abort_fn: AbortFn | None = None,
    ) -> PollOutcome:
        """Poll until a fresh payload arrives, ``abort_fn`` returns a reason, or polls run out."""
        outcome: PollOutcome | None = None
        for poll in range(1, self._max_polls + 1):
            self._wait(self._interval)
            step = self.poll_once(requested_at)
            if step.status is not PollStatus.DELIVERED and abort_fn is not None:
                reason = abort_fn()
                if reason:
                    outcome = PollOutcome(groups=(), error=reason, polls=poll)
                    break
            if step.status is PollStatus.STALE:
                logger.debug("Ignoring stale handoff payload completed at %s", step.payload.completed_at)
            if step.status is PollStatus.DELIVERED and step.payload is not None:
                groups = step.payload.results
                outcome = PollOutcome(
                    groups=groups,
                    error=None if groups else NO_GROUPS_ERROR,
                    polls=poll,
                    completed_at=step.payload.completed_at,
                )
                break

        if outcome is None:
            logger.info("No handoff payload after %d polls; giving up.", self._max_polls)
            outcome = PollOutcome(groups=(), error=TIMEOUT_ERROR, polls=self._max_polls, timed_out=True)
        if deliver is not None:
            deliver(outcome)
        return outcome


class WakeableWait:
    """Interval wait that ends early when the direct notification channel fires."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def wake(self, _message: GroupsCollected | None = None) -> None:
        self._event.set()

    def __call__(self, seconds: float) -> None:
        self._event.wait(seconds)
        self._event.clear()


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
