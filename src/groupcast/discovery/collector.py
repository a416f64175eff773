"""Convergence-driven scroll collection over an attached host page."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import random
from typing import Any, Protocol

from groupcast.config import CollectorConfig, RuntimeConfig
from groupcast.diagnostics.events import JsonlEventLogger
from groupcast.discovery.dom import DomScanner
from groupcast.discovery.interception import InterceptionLayer
from groupcast.discovery.names import NameFilter
from groupcast.discovery.result_set import ResultSet
from groupcast.errors import CollectError
from groupcast.logging import get_logger
from groupcast.models import CandidateEntity, DiscoverySource

logger = get_logger(__name__)

SCROLL_TO_BOTTOM_JS = "() => { window.scrollTo(0, document.body.scrollHeight); return document.body.scrollHeight; }"
SCROLL_HEIGHT_JS = "() => document.body.scrollHeight"

NowFn = Callable[[], datetime]
WaitFn = Callable[[float], None]


class CollectorPage(Protocol):
    def evaluate(self, expression: str) -> Any:
        """Run JavaScript expression on page."""

    def content(self) -> str:
        """Return page HTML content."""

    def on(self, event: str, handler: Any) -> Any:
        """Register an event listener."""


class RunState(str, Enum):
    IDLE = "idle"
    SCROLLING = "scrolling"
    DONE = "done"


@dataclass(frozen=True)
class TickSnapshot:
    tick: int
    scroll_height: int
    result_count: int
    idle_ticks: int


@dataclass(frozen=True)
class CollectionResult:
    candidates: tuple[CandidateEntity, ...]
    ticks: int
    stop_reason: str
    started_at: datetime
    completed_at: datetime


class CaptureState:
    """Per-page capture state created when the scanner attaches to a host page.

    The result set outlives individual runs so a later run keeps what earlier
    runs and the interception listener already captured. Results of an older
    run are told apart downstream by their completion timestamp.
    """

    def __init__(self, config: RuntimeConfig | None = None) -> None:
        resolved = config or RuntimeConfig()
        self.name_filter = NameFilter.from_terms(resolved.platform.banned_name_terms)
        self.result_set = ResultSet()
        self.interception = InterceptionLayer(
            self.result_set,
            url_markers=resolved.platform.intercept_url_markers,
            max_depth=resolved.collector.json_max_depth,
            name_filter=self.name_filter,
        )
        self.scanner = DomScanner(
            reserved_slugs=resolved.platform.reserved_slugs,
            name_filter=self.name_filter,
            max_depth=resolved.collector.json_max_depth,
        )

    def attach(self, page: CollectorPage) -> None:
        self.interception.attach(page)


class ConvergenceCollector:
    """Drive ``idle -> scrolling -> done`` until results stop growing or the deadline passes."""

    def __init__(
        self,
        page: CollectorPage,
        capture: CaptureState,
        *,
        settings: CollectorConfig | None = None,
        wait_fn: WaitFn | None = None,
        now_fn: NowFn | None = None,
        rng: random.Random | None = None,
        event_logger: JsonlEventLogger | None = None,
        run_id: str | None = None,
        deadline: datetime | None = None,
    ) -> None:
        self._page = page
        self._capture = capture
        self._settings = _validate_settings(settings or CollectorConfig())
        self._wait = wait_fn or _page_wait_fn(page)
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.Random()
        self._event_logger = event_logger
        self._run_id = run_id or "collect"
        self._deadline = deadline
        self.state = RunState.IDLE
        self.ticks: list[TickSnapshot] = []

    def tick_delay(self) -> float:
        jitter = self._settings.scroll_jitter_seconds
        return self._settings.scroll_wait_seconds + (self._rng.uniform(0, jitter) if jitter > 0 else 0.0)

    def run(self) -> CollectionResult:
        if self.state is not RunState.IDLE:
            raise CollectError(f"Collector already used (state '{self.state.value}'); create a new collector per run.")

        self._capture.attach(self._page)
        started_at = self._now()
        self.state = RunState.SCROLLING

        last_height = self._scroll_height()
        last_count = len(self._capture.result_set)
        idle_ticks = 0
        tick = 0
        stop_reason = "converged"

        while True:
            tick += 1
            self._scroll_to_bottom()
            self._wait(self.tick_delay())
            self._capture.interception.flush()
            self._merge_dom()

            height = self._scroll_height()
            count = len(self._capture.result_set)
            if height == last_height and count == last_count:
                idle_ticks += 1
            else:
                idle_ticks = 0
                last_height = height
                last_count = count

            snapshot = TickSnapshot(tick=tick, scroll_height=height, result_count=count, idle_ticks=idle_ticks)
            self.ticks.append(snapshot)
            self._log_tick(snapshot)

            if idle_ticks >= self._settings.idle_ticks:
                break
            if self._out_of_time(started_at):
                stop_reason = "timeout"
                break

        candidates = self._finalize()
        self.state = RunState.DONE
        completed_at = self._now()
        logger.info(
            "Collection finished after %d ticks (%s): %d groups",
            tick,
            stop_reason,
            len(candidates),
        )
        return CollectionResult(
            candidates=candidates,
            ticks=tick,
            stop_reason=stop_reason,
            started_at=started_at,
            completed_at=completed_at,
        )

    def _out_of_time(self, started_at: datetime) -> bool:
        now = self._now()
        if self._deadline is not None and now >= self._deadline:
            return True
        return (now - started_at).total_seconds() >= self._settings.max_runtime_seconds

    def _finalize(self) -> tuple[CandidateEntity, ...]:
        html = self._read_content()
        result_set = self._capture.result_set
        result_set.merge(self._capture.scanner.scan(html), DiscoverySource.DOM)
        result_set.merge(self._capture.scanner.scan_inline_scripts(html), DiscoverySource.INLINE_SCRIPT)
        self._capture.interception.flush()
        return tuple(result_set.to_list())

    def _merge_dom(self) -> None:
        html = self._read_content()
        self._capture.result_set.merge(self._capture.scanner.scan(html), DiscoverySource.DOM)

    def _scroll_to_bottom(self) -> None:
        try:
            self._page.evaluate(SCROLL_TO_BOTTOM_JS)
        except Exception as exc:
            logger.debug("Scroll failed: %s", exc)

    def _scroll_height(self) -> int:
        try:
            value = self._page.evaluate(SCROLL_HEIGHT_JS)
        except Exception as exc:
            logger.debug("Could not read scroll height: %s", exc)
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    def _read_content(self) -> str:
        try:
            return str(self._page.content())
        except Exception as exc:
            logger.debug("Could not read page content: %s", exc)
            return ""

    def _log_tick(self, snapshot: TickSnapshot) -> None:
        logger.debug(
            "Tick #%d: height=%d groups=%d idle=%d",
            snapshot.tick,
            snapshot.scroll_height,
            snapshot.result_count,
            snapshot.idle_ticks,
        )
        if self._event_logger is not None:
            self._event_logger.append(
                "collect_tick",
                run_id=self._run_id,
                payload={
                    "tick": snapshot.tick,
                    "scroll_height": snapshot.scroll_height,
                    "result_count": snapshot.result_count,
                    "idle_ticks": snapshot.idle_ticks,
                },
            )


def _validate_settings(settings: CollectorConfig) -> CollectorConfig:
    if settings.idle_ticks <= 0:
        raise CollectError("idle_ticks must be > 0.")
    if settings.scroll_wait_seconds < 0 or settings.scroll_jitter_seconds < 0:
        raise CollectError("scroll wait and jitter must be >= 0.")
    if settings.max_runtime_seconds <= 0:
        raise CollectError("max_runtime_seconds must be > 0.")
    return settings


def _page_wait_fn(page: CollectorPage) -> WaitFn:
    waiter = getattr(page, "wait_for_timeout", None)
    if not callable(waiter):
        raise CollectError("Page does not support wait_for_timeout; pass wait_fn explicitly.")

    def _wait(seconds: float) -> None:
        waiter(seconds * 1000)

    return _wait
