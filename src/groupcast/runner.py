"""End-to-end workflows wiring the coordinator, handoff, and dispatch for the CLI."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from datetime import datetime, timedelta, timezone
from pathlib import Path
import threading
from typing import Any

from groupcast.browser.session import PlaywrightBrowserSession
from groupcast.config import RuntimeConfig, check_collection_fits_handoff
from groupcast.coordinator import Coordinator
from groupcast.diagnostics.events import JsonlEventLogger
from groupcast.dispatch.queue import Publisher
from groupcast.errors import GroupcastError
from groupcast.handoff.mailbox import InMemoryMailbox, SQLiteMailbox
from groupcast.handoff.protocol import PollOutcome, ResultPoller, WakeableWait
from groupcast.logging import get_logger
from groupcast.messages import ControlMessage, Done, GroupsLoaded, LoadGroups, PostAll, SessionStatus
from groupcast.models import DispatchTarget

logger = get_logger(__name__)

MAILBOX_FILENAME = "handoff.sqlite3"

SessionFactory = Callable[[RuntimeConfig, "Path | None", "bool | None"], AbstractContextManager[Any]]
MessageSink = Callable[[ControlMessage], None]
NowFn = Callable[[], datetime]


def default_session_factory(
    config: RuntimeConfig, storage_state: Path | None, headless: bool | None
) -> PlaywrightBrowserSession:
    return PlaywrightBrowserSession(config, headless=headless, storage_state=storage_state)


def check_session(
    config: RuntimeConfig,
    *,
    storage_state: Path | None,
    headless: bool | None = True,
    session_factory: SessionFactory | None = None,
) -> SessionStatus:
    factory = session_factory or default_session_factory
    with factory(config, storage_state, headless) as session:
        coordinator = Coordinator(session, config, mailbox=InMemoryMailbox())
        return coordinator.check_session()


def run_group_discovery(
    config: RuntimeConfig,
    *,
    mailbox_path: Path,
    storage_state: Path | None = None,
    headless: bool | None = None,
    session_factory: SessionFactory | None = None,
    on_message: MessageSink | None = None,
    event_logger: JsonlEventLogger | None = None,
    now_fn: NowFn | None = None,
    join_timeout_seconds: float = 10.0,
) -> PollOutcome:
    """Run a collection in a worker thread and wait for its payload through the mailbox.

    The worker owns the browser session and its own mailbox connection. The
    direct notification only wakes the poller; the payload itself is always
    read from the mailbox.
    """
    check_collection_fits_handoff(config)
    now = now_fn or (lambda: datetime.now(timezone.utc))
    waiter = WakeableWait()
    abort_reasons: list[str] = []
    lock = threading.Lock()

    def _sink(message: ControlMessage) -> None:
        if isinstance(message, GroupsLoaded) and message.error:
            with lock:
                abort_reasons.append(message.error)
            waiter.wake()
        if on_message is not None:
            on_message(message)

    def _abort_reason() -> str | None:
        with lock:
            return abort_reasons[0] if abort_reasons else None

    requested_at = now()
    # leave the poller two ticks to pick up whatever the collector saved
    handoff = config.handoff
    deadline = requested_at + timedelta(seconds=handoff.window_seconds - 2 * handoff.poll_interval_seconds)
    worker = threading.Thread(
        target=_discovery_worker,
        name="groupcast-collector",
        kwargs={
            "config": config,
            "mailbox_path": mailbox_path,
            "storage_state": storage_state,
            "headless": headless,
            "session_factory": session_factory or default_session_factory,
            "emit": _sink,
            "notify": waiter.wake,
            "event_logger": event_logger,
            "deadline": deadline,
        },
        daemon=True,
    )
    # bootstrap the mailbox schema before the worker opens its own connection
    with SQLiteMailbox(mailbox_path) as mailbox:
        worker.start()
        poller = ResultPoller(
            mailbox,
            interval_seconds=config.handoff.poll_interval_seconds,
            max_polls=config.handoff.max_polls,
            channel=config.handoff.channel,
            wait_fn=waiter,
        )
        outcome = poller.wait_for_results(requested_at, abort_fn=_abort_reason)
    worker.join(timeout=join_timeout_seconds)
    if worker.is_alive():
        logger.warning("Collector thread still running after results were handled.")
    return outcome


def run_dispatch(
    config: RuntimeConfig,
    targets: Sequence[DispatchTarget],
    message: str,
    publisher: Publisher,
    *,
    delay_seconds: float | None = None,
    image_urls: Sequence[str] = (),
    image_files: Sequence[Path] = (),
    start_index: int = 0,
    on_message: MessageSink | None = None,
    on_coordinator: Callable[[Coordinator], None] | None = None,
    sleep_fn: Callable[[float], None] | None = None,
    event_logger: JsonlEventLogger | None = None,
) -> Done:
    """Publish to selected targets through the coordinator; the browser is never opened."""
    request = PostAll(
        targets=tuple(targets),
        message=message,
        delay_seconds=delay_seconds if delay_seconds is not None else config.dispatch.delay_seconds,
        image_urls=tuple(image_urls),
        image_files=tuple(str(path) for path in image_files),
    )
    coordinator = Coordinator(
        default_session_factory(config, None, True),
        config,
        mailbox=InMemoryMailbox(),
        publisher=publisher,
        emit=on_message,
        sleep_fn=sleep_fn,
        event_logger=event_logger,
    )
    if on_coordinator is not None:
        on_coordinator(coordinator)
    return coordinator.post_to_targets(request, start_index=start_index)


def _discovery_worker(
    *,
    config: RuntimeConfig,
    mailbox_path: Path,
    storage_state: Path | None,
    headless: bool | None,
    session_factory: SessionFactory,
    emit: MessageSink,
    notify: Callable[..., None],
    event_logger: JsonlEventLogger | None,
    deadline: datetime | None = None,
) -> None:
    try:
        with SQLiteMailbox(mailbox_path) as mailbox, session_factory(config, storage_state, headless) as session:
            coordinator = Coordinator(
                session,
                config,
                mailbox=mailbox,
                emit=emit,
                notify=notify,
                event_logger=event_logger,
                collection_deadline=deadline,
            )
            coordinator.handle(LoadGroups())
    except GroupcastError as exc:
        logger.info("Group discovery failed: %s", exc)
        emit(GroupsLoaded(groups=(), error=str(exc)))
    except Exception as exc:
        logger.exception("Unexpected collector failure")
        emit(GroupsLoaded(groups=(), error=f"Collector failed: {exc}"))
