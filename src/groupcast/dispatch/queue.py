"""Sequential, paced publishing of one payload to an ordered list of targets."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
import time
from typing import Protocol

from groupcast.diagnostics.events import JsonlEventLogger
from groupcast.errors import DispatchError
from groupcast.logging import get_logger
from groupcast.models import DispatchOutcome, DispatchTarget, PostPayload, PublishResult

logger = get_logger(__name__)


class Publisher(Protocol):
    def publish(self, target_id: str, payload: PostPayload) -> PublishResult:
        """Publish payload to one target and report the outcome."""


class TargetState(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SUCCESS = "success"
    FAILED = "failed"


class QueueStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ProgressUpdate:
    current: int
    total: int
    target_id: str
    target_name: str
    state: TargetState
    error: str | None = None


ProgressFn = Callable[[ProgressUpdate], None]
SleepFn = Callable[[float], None]


def selected_targets(targets: Iterable[DispatchTarget]) -> tuple[DispatchTarget, ...]:
    return tuple(target for target in targets if target.selected)


class DispatchRun:
    """One dispatch run: ordered queue, cursor, pacing delay, and pause flag.

    ``run()`` processes targets from the cursor until the queue is exhausted or a
    pause is requested. A pause requested while a publish call is in flight takes
    effect before the next target starts; ``resume()`` continues from the cursor.
    """

    def __init__(
        self,
        targets: Sequence[DispatchTarget],
        payload: PostPayload,
        publisher: Publisher,
        *,
        delay_seconds: float = 3.0,
        start_index: int = 0,
        on_progress: ProgressFn | None = None,
        sleep_fn: SleepFn | None = None,
        event_logger: JsonlEventLogger | None = None,
        run_id: str | None = None,
    ) -> None:
        if delay_seconds <= 0:
            raise DispatchError("delay_seconds must be > 0.")
        if start_index < 0 or start_index > len(targets):
            raise DispatchError(f"start_index must be between 0 and {len(targets)}.")
        self._targets = tuple(targets)
        self._payload = payload
        self._publisher = publisher
        self._delay = float(delay_seconds)
        self._cursor = start_index
        self._on_progress = on_progress
        self._sleep = sleep_fn or time.sleep
        self._event_logger = event_logger
        self._run_id = run_id or "dispatch"
        self._pause_requested = False
        self._states = [TargetState.PENDING] * len(self._targets)
        self._outcomes: list[DispatchOutcome] = []
        self.status = QueueStatus.COMPLETED if start_index == len(targets) else QueueStatus.IDLE

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def total(self) -> int:
        return len(self._targets)

    @property
    def outcomes(self) -> tuple[DispatchOutcome, ...]:
        return tuple(self._outcomes)

    def state_of(self, index: int) -> TargetState:
        return self._states[index]

    def pause(self) -> None:
        self._pause_requested = True

    def resume(self) -> tuple[DispatchOutcome, ...]:
        if self.status is QueueStatus.COMPLETED:
            return self.outcomes
        self._pause_requested = False
        return self.run()

    def run(self) -> tuple[DispatchOutcome, ...]:
        if self.status is QueueStatus.RUNNING:
            raise DispatchError("Dispatch run is already running.")
        if self.status is QueueStatus.COMPLETED:
            return self.outcomes

        self.status = QueueStatus.RUNNING
        while self._cursor < len(self._targets):
            if self._pause_requested:
                self.status = QueueStatus.PAUSED
                logger.info("Dispatch paused at %d/%d", self._cursor, len(self._targets))
                return self.outcomes

            self._process(self._cursor)
            self._cursor += 1

            if self._cursor < len(self._targets) and not self._pause_requested:
                self._sleep(self._delay)

        self.status = QueueStatus.COMPLETED
        succeeded = sum(1 for outcome in self._outcomes if outcome.success)
        logger.info("Dispatch completed: %d/%d succeeded", succeeded, len(self._outcomes))
        if self._event_logger is not None:
            self._event_logger.append(
                "dispatch_completed",
                run_id=self._run_id,
                payload={"total": len(self._targets), "succeeded": succeeded, "outcomes": len(self._outcomes)},
            )
        return self.outcomes

    def _process(self, index: int) -> None:
        target = self._targets[index]
        self._transition(index, TargetState.SENDING)
        try:
            result = self._publisher.publish(target.id, self._payload)
        except Exception as exc:
            result = PublishResult(success=False, error=str(exc) or type(exc).__name__)

        outcome = DispatchOutcome(
            id=target.id,
            name=target.name,
            success=bool(result.success),
            error=None if result.success else (result.error or "Unknown publish error"),
        )
        self._outcomes.append(outcome)
        if outcome.success:
            self._transition(index, TargetState.SUCCESS)
        else:
            logger.warning("Publish to %s failed: %s", target.id, outcome.error)
            self._transition(index, TargetState.FAILED, error=outcome.error)

        if self._event_logger is not None:
            self._event_logger.append(
                "dispatch_item",
                run_id=self._run_id,
                payload={
                    "position": index + 1,
                    "target_id": target.id,
                    "success": outcome.success,
                    "error": outcome.error,
                    "post_id": result.post_id,
                },
            )

    def _transition(self, index: int, state: TargetState, *, error: str | None = None) -> None:
        self._states[index] = state
        if self._on_progress is None:
            return
        target = self._targets[index]
        self._on_progress(
            ProgressUpdate(
                current=index + 1,
                total=len(self._targets),
                target_id=target.id,
                target_name=target.name,
                state=state,
                error=error,
            )
        )
