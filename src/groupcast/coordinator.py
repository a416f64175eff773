"""Long-lived coordinator: session checks, collection runs, and dispatch relay."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import random
import re
import time
from typing import Any

from groupcast.browser.policy import detect_page_login_wall
from groupcast.browser.session import BrowserSessionManager
from groupcast.config import RuntimeConfig
from groupcast.diagnostics.events import JsonlEventLogger, new_run_id
from groupcast.discovery.collector import CaptureState, CollectionResult, ConvergenceCollector
from groupcast.dispatch.queue import DispatchRun, ProgressUpdate, Publisher, QueueStatus, TargetState, selected_targets
from groupcast.errors import BrowserError, DispatchError
from groupcast.handoff.mailbox import Mailbox
from groupcast.handoff.protocol import NotifyFn, publish_results
from groupcast.logging import get_logger
from groupcast.messages import (
    BeginScan,
    CheckSession,
    ControlMessage,
    Done,
    GroupsLoaded,
    LoadGroups,
    Log,
    PostAll,
    Progress,
    SessionStatus,
    post_all_image_paths,
)
from groupcast.models import HandoffPayload, PostPayload

logger = get_logger(__name__)

SESSION_COOKIE_NAME = "c_user"
DEFAULT_USER_NAME = "Facebook User"
READY_STATE_JS = "() => document.readyState"

_SESSION_COOKIE_RE = re.compile(r"^\d+$")
_DTSG_PATTERNS = (
    re.compile(r'"DTSGInitialData",\[\],\{"token":"([^"]+)"'),
    re.compile(r'name="fb_dtsg" value="([^"]+)"'),
    re.compile(r'"dtsg":\{"token":"([^"]+)"'),
    re.compile(r'\["DTSGInitData",\[\],\{"token":"([^"]+)"'),
)

EmitFn = Callable[[ControlMessage], None]
SleepFn = Callable[[float], None]
NowFn = Callable[[], datetime]


class CollectionStatus(str, Enum):
    STARTED = "started"
    LOAD_TIMEOUT = "load_timeout"
    LOGIN_REQUIRED = "login_required"
    COULD_NOT_ATTACH = "could_not_attach"


@dataclass(frozen=True)
class CollectionStart:
    status: CollectionStatus
    message: str
    page: Any | None = None
    capture: CaptureState | None = None
    attempts: int = 0


def find_dtsg_token(html: str) -> str | None:
    for pattern in _DTSG_PATTERNS:
        match = pattern.search(html)
        if match:
            return match.group(1)
    return None


class Coordinator:
    """Owns the browser session and answers control messages from the consumer.

    Everything it reports back goes through ``emit``; the collection result
    additionally travels through the mailbox so a consumer that misses the
    direct notification still finds it.
    """

    def __init__(
        self,
        session: BrowserSessionManager,
        config: RuntimeConfig,
        *,
        mailbox: Mailbox,
        publisher: Publisher | None = None,
        emit: EmitFn | None = None,
        notify: NotifyFn | None = None,
        sleep_fn: SleepFn | None = None,
        now_fn: NowFn | None = None,
        rng: random.Random | None = None,
        event_logger: JsonlEventLogger | None = None,
        collection_deadline: datetime | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._mailbox = mailbox
        self._publisher = publisher
        self._emit_fn = emit
        self._notify = notify
        self._sleep = sleep_fn or time.sleep
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self._rng = rng
        self._event_logger = event_logger
        self._collection_deadline = collection_deadline
        self._session_cache: SessionStatus | None = None
        self._pending: CollectionStart | None = None
        self._dispatch: DispatchRun | None = None

    @property
    def active_dispatch(self) -> DispatchRun | None:
        return self._dispatch

    def handle(self, message: ControlMessage) -> ControlMessage | None:
        if isinstance(message, CheckSession):
            return self.check_session()
        if isinstance(message, LoadGroups):
            return self.load_groups()
        if isinstance(message, BeginScan):
            if self._pending is None:
                logger.warning("BEGIN_SCAN received with no attached page.")
                return None
            self.run_collection(self._pending)
            return None
        if isinstance(message, PostAll):
            return self.post_to_targets(message)
        logger.debug("Ignoring unsupported control message %s", message.type)
        return None

    def check_session(self) -> SessionStatus:
        if self._session_cache is not None:
            return self._session_cache

        status = self._probe_session()
        if status.logged:
            self._session_cache = status
        return status

    def load_groups(self) -> GroupsLoaded | None:
        """Start a collection run; only start failures come back as a message."""
        start = self.start_collection()
        if start.status is not CollectionStatus.STARTED:
            message = GroupsLoaded(groups=(), error=start.message)
            self._emit(message)
            return message
        self._emit(Log("Scrolling the listing page to trigger group requests..."))
        self.handle(BeginScan())
        return None

    def start_collection(self) -> CollectionStart:
        settings = self._config.coordinator
        groups_url = self._config.platform.groups_url
        self._emit(Log("Starting group capture..."))
        try:
            page = self._session.new_page()
        except BrowserError as exc:
            return CollectionStart(status=CollectionStatus.COULD_NOT_ATTACH, message=str(exc))

        # Listen before navigating so the first page of group requests is captured.
        capture = CaptureState(self._config)
        capture.attach(page)
        try:
            page.goto(groups_url, wait_until="load", timeout=settings.load_timeout_ms)
        except Exception as exc:
            logger.info("Listing page did not finish loading: %s", exc)
            _close_quietly(page)
            return CollectionStart(
                status=CollectionStatus.LOAD_TIMEOUT,
                message="Timed out loading the groups listing page.",
            )

        blocked = detect_page_login_wall(page)
        if blocked is not None:
            _close_quietly(page)
            self._session_cache = None
            return CollectionStart(
                status=CollectionStatus.LOGIN_REQUIRED,
                message=f"Host page shows a {blocked.replace('_', ' ')}; log in with `groupcast auth login` and retry.",
            )

        for attempt in range(1, settings.attach_attempts + 1):
            if self._page_ready(page):
                start = CollectionStart(
                    status=CollectionStatus.STARTED,
                    message="started",
                    page=page,
                    capture=capture,
                    attempts=attempt,
                )
                self._pending = start
                return start
            if attempt < settings.attach_attempts:
                self._sleep(settings.attach_interval_seconds)

        _close_quietly(page)
        return CollectionStart(
            status=CollectionStatus.COULD_NOT_ATTACH,
            message="Could not attach the scanner to the listing page.",
            attempts=settings.attach_attempts,
        )

    def run_collection(self, start: CollectionStart) -> CollectionResult:
        if start.status is not CollectionStatus.STARTED or start.page is None or start.capture is None:
            raise BrowserError(f"Cannot run collection from start status '{start.status.value}'.")
        if self._pending is start:
            self._pending = None

        run_id = new_run_id("collect")
        collector = ConvergenceCollector(
            start.page,
            start.capture,
            settings=self._config.collector,
            wait_fn=self._collector_wait(start.page),
            now_fn=self._now,
            rng=self._rng,
            event_logger=self._event_logger,
            run_id=run_id,
            deadline=self._collection_deadline,
        )
        try:
            result = collector.run()
        finally:
            _close_quietly(start.page)

        payload = HandoffPayload(results=result.candidates, completed_at=result.completed_at, run_id=run_id)
        publish_results(
            self._mailbox,
            payload,
            notify=self._notify,
            channel=self._config.handoff.channel,
        )
        self._emit(Log(f"Capture finished: {len(result.candidates)} groups."))
        return result

    def post_to_targets(self, message: PostAll, *, start_index: int = 0) -> Done:
        if self._publisher is None:
            raise DispatchError("No publisher configured for dispatch.")

        targets = selected_targets(message.targets)
        if not targets:
            done = Done(results=())
            self._emit(done)
            return done

        payload = PostPayload(
            message=message.message,
            image_urls=message.image_urls,
            image_files=post_all_image_paths(message),
        )
        run = DispatchRun(
            targets,
            payload,
            self._publisher,
            delay_seconds=message.delay_seconds,
            start_index=start_index,
            on_progress=self._relay_progress,
            sleep_fn=self._sleep,
            event_logger=self._event_logger,
            run_id=new_run_id("dispatch"),
        )
        self._dispatch = run
        return self._finish_dispatch(run, run.run())

    def pause_dispatch(self) -> None:
        if self._dispatch is not None:
            self._dispatch.pause()

    def resume_dispatch(self) -> Done | None:
        if self._dispatch is None:
            return None
        return self._finish_dispatch(self._dispatch, self._dispatch.resume())

    def _finish_dispatch(self, run: DispatchRun, outcomes: tuple) -> Done:
        done = Done(results=outcomes, paused=run.status is QueueStatus.PAUSED)
        self._emit(done)
        return done

    def _relay_progress(self, update: ProgressUpdate) -> None:
        terminal = update.state in (TargetState.SUCCESS, TargetState.FAILED)
        self._emit(
            Progress(
                current=update.current,
                total=update.total,
                target_id=update.target_id,
                target_name=update.target_name,
                state=update.state.value,
                success=(update.state is TargetState.SUCCESS) if terminal else None,
                error=update.error,
            )
        )

    def _probe_session(self) -> SessionStatus:
        try:
            self._session.open()
            cookies = self._session.cookies([self._config.platform.origin])
        except BrowserError as exc:
            logger.info("Session probe could not read cookies: %s", exc)
            return SessionStatus(logged=False)

        for cookie in cookies:
            value = str(cookie.get("value") or "")
            if cookie.get("name") == SESSION_COOKIE_NAME and _SESSION_COOKIE_RE.match(value):
                return SessionStatus(logged=True, user_name=value)

        for page in self._session.pages():
            try:
                html = page.content()
            except Exception as exc:
                logger.debug("Could not read open page for session token: %s", exc)
                continue
            if find_dtsg_token(str(html)):
                return SessionStatus(logged=True, user_name=DEFAULT_USER_NAME)
        return SessionStatus(logged=False)

    def _page_ready(self, page: Any) -> bool:
        try:
            ready = page.evaluate(READY_STATE_JS)
        except Exception as exc:
            logger.debug("Attach probe failed: %s", exc)
            return False
        return ready in ("interactive", "complete")

    def _collector_wait(self, page: Any) -> SleepFn:
        waiter = getattr(page, "wait_for_timeout", None)
        if callable(waiter):
            return lambda seconds: waiter(seconds * 1000)
        return self._sleep

    def _emit(self, message: ControlMessage) -> None:
        if self._emit_fn is None:
            return
        try:
            self._emit_fn(message)
        except Exception as exc:
            logger.info("Could not deliver %s to consumer: %s", message.type, exc)


def _close_quietly(page: Any) -> None:
    try:
        page.close()
    except Exception as exc:
        logger.debug("Page close failed: %s", exc)
