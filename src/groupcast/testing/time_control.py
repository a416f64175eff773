"""Injectable clocks and sleeps so pacing and timeouts can be asserted without waiting."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import itertools
from typing import Callable

NowFn = Callable[[], datetime]


def fixed_now(moment: datetime) -> NowFn:
    frozen = _aware(moment)
    return lambda: frozen


def sequenced_now(*moments: datetime) -> NowFn:
    """Yield each moment once, in order; an extra lookup fails the test."""
    if not moments:
        raise ValueError("sequenced_now needs at least one datetime.")
    remaining: Iterator[datetime] = iter([_aware(moment) for moment in moments])
    total = len(moments)

    def _now() -> datetime:
        try:
            return next(remaining)
        except StopIteration:
            raise AssertionError(f"Clock exhausted after {total} reading(s); code read the time more than expected.") from None

    return _now


def stepping_now(start: datetime, *, step_seconds: float) -> NowFn:
    """First reading is ``start``; each later reading is ``step_seconds`` further on."""
    if step_seconds < 0:
        raise ValueError("step_seconds cannot be negative.")
    origin = _aware(start)
    step = timedelta(seconds=step_seconds)
    ticks = itertools.count()
    return lambda: origin + step * next(ticks)


@dataclass
class SleepRecorder:
    """Stand-in for ``time.sleep``; ``on_sleep`` receives the 1-based call number."""

    calls: list[float] = field(default_factory=list)
    on_sleep: Callable[[int], None] | None = None

    def __call__(self, seconds: float) -> None:
        self.calls.append(float(seconds))
        if self.on_sleep:
            self.on_sleep(len(self.calls))

    @property
    def total(self) -> float:
        return sum(self.calls)


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        raise ValueError(f"{moment!r} has no tzinfo; test clocks only hand out aware datetimes.")
    return moment
