from __future__ import annotations

import itertools
import json
from pathlib import Path
import time
from typing import Any

import pytest

from groupcast.config import CollectorConfig, CoordinatorConfig, HandoffConfig, RuntimeConfig
from groupcast.coordinator import READY_STATE_JS, Coordinator
from groupcast.discovery.collector import SCROLL_HEIGHT_JS
from groupcast.errors import BrowserError, ConfigError
from groupcast.messages import ControlMessage, Done, GroupsLoaded, Progress
from groupcast.models import CandidateEntity, DispatchTarget, PostPayload, PublishResult
from groupcast.runner import check_session, run_dispatch, run_group_discovery
from groupcast.testing.time_control import SleepRecorder

LISTING_HTML = """
<div role="listitem"><a href="/groups/1111111/">Alpha Link Text</a></div>
<div role="listitem"><a href="/groups/2222222/">Beta Builders</a></div>
"""


class FakeResponse:
    def __init__(self, url: str, body: str) -> None:
        self.url = url
        self._body = body

    def text(self) -> str:
        return self._body


class FakeListingPage:
    def __init__(self) -> None:
        self.url = "https://www.facebook.com/groups/joins/"
        self.handlers: list[Any] = []
        self.closed = False

    def on(self, event: str, handler: Any) -> None:
        self.handlers.append(handler)

    def goto(self, url: str, **kwargs: Any) -> None:
        body = json.dumps(
            {"data": {"group": {"__typename": "Group", "id": "3333333", "name": "Gamma Group", "url": url}}}
        )
        for handler in self.handlers:
            handler(FakeResponse("https://www.facebook.com/api/graphql/", body + " " * 40))

    def evaluate(self, expression: str) -> Any:
        if expression == READY_STATE_JS:
            return "complete"
        if expression == SCROLL_HEIGHT_JS:
            return 1000
        return None

    def content(self) -> str:
        return LISTING_HTML

    def wait_for_timeout(self, timeout_ms: float) -> None:
        return None

    def title(self) -> str:
        return "Groups"

    def inner_text(self, selector: str, timeout: float | None = None) -> str:
        return ""

    def close(self) -> None:
        self.closed = True


class EndlessListingPage(FakeListingPage):
    """Infinite feed: the page keeps growing however long it is scrolled."""

    def __init__(self) -> None:
        super().__init__()
        self._heights = itertools.count(1000, 500)

    def evaluate(self, expression: str) -> Any:
        if expression == SCROLL_HEIGHT_JS:
            return next(self._heights)
        return super().evaluate(expression)

    def wait_for_timeout(self, timeout_ms: float) -> None:
        time.sleep(0.02)


class FakeSession:
    def __init__(
        self,
        *,
        cookies: list[dict[str, Any]] | None = None,
        new_page_error: Exception | None = None,
        page_type: type[FakeListingPage] = FakeListingPage,
    ) -> None:
        self.cookie_jar = cookies or []
        self.new_page_error = new_page_error
        self.page_type = page_type
        self.entered = 0
        self.exited = 0

    def __enter__(self) -> FakeSession:
        self.entered += 1
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        self.exited += 1
        return False

    def open(self) -> None:
        return None

    def close(self) -> None:
        return None

    def new_page(self) -> FakeListingPage:
        if self.new_page_error is not None:
            raise self.new_page_error
        return self.page_type()

    def pages(self) -> list[Any]:
        return []

    def cookies(self, urls: Any = None) -> list[dict[str, Any]]:
        return self.cookie_jar


class FakePublisher:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def publish(self, target_id: str, payload: PostPayload) -> PublishResult:
        self.calls.append(target_id)
        return PublishResult(success=True, post_id=f"{target_id}_1")


def _config(*, max_runtime_seconds: int = 5) -> RuntimeConfig:
    return RuntimeConfig(
        collector=CollectorConfig(
            scroll_wait_seconds=0, scroll_jitter_seconds=0, idle_ticks=2, max_runtime_seconds=max_runtime_seconds
        ),
        coordinator=CoordinatorConfig(attach_attempts=2, attach_interval_seconds=0),
        handoff=HandoffConfig(poll_interval_seconds=0.05, max_polls=200),
    )


def test_run_group_discovery_hands_results_through_mailbox(tmp_path: Path) -> None:
    sessions: list[FakeSession] = []
    messages: list[ControlMessage] = []

    def factory(config: RuntimeConfig, storage_state: Path | None, headless: bool | None) -> FakeSession:
        session = FakeSession()
        sessions.append(session)
        return session

    outcome = run_group_discovery(
        _config(),
        mailbox_path=tmp_path / "handoff.sqlite3",
        session_factory=factory,
        on_message=messages.append,
    )

    assert outcome.error is None
    assert not outcome.timed_out
    assert outcome.groups == (
        CandidateEntity("3333333", "Gamma Group"),
        CandidateEntity("1111111", "Alpha Link Text"),
        CandidateEntity("2222222", "Beta Builders"),
    )
    assert sessions[0].entered == 1
    assert not any(isinstance(message, GroupsLoaded) for message in messages)


def test_run_group_discovery_returns_start_failure_without_waiting(tmp_path: Path) -> None:
    messages: list[ControlMessage] = []

    outcome = run_group_discovery(
        _config(),
        mailbox_path=tmp_path / "handoff.sqlite3",
        session_factory=lambda config, state, headless: FakeSession(new_page_error=BrowserError("no context")),
        on_message=messages.append,
    )

    assert outcome.error == "no context"
    assert outcome.groups == ()
    assert not outcome.timed_out
    assert GroupsLoaded(groups=(), error="no context") in messages


def test_run_group_discovery_reports_unexpected_worker_failure(tmp_path: Path) -> None:
    def factory(config: RuntimeConfig, storage_state: Path | None, headless: bool | None) -> FakeSession:
        raise RuntimeError("driver crashed")

    outcome = run_group_discovery(_config(), mailbox_path=tmp_path / "handoff.sqlite3", session_factory=factory)

    assert outcome.error == "Collector failed: driver crashed"


def test_run_group_discovery_delivers_partial_results_when_page_never_settles(tmp_path: Path) -> None:
    outcome = run_group_discovery(
        _config(max_runtime_seconds=1),
        mailbox_path=tmp_path / "handoff.sqlite3",
        session_factory=lambda config, state, headless: FakeSession(page_type=EndlessListingPage),
    )

    assert outcome.error is None
    assert not outcome.timed_out
    assert {group.id for group in outcome.groups} == {"3333333", "1111111", "2222222"}


def test_run_group_discovery_rejects_collector_deadline_past_poll_window(tmp_path: Path) -> None:
    opened: list[RuntimeConfig] = []

    with pytest.raises(ConfigError, match="collector.max_runtime_seconds"):
        run_group_discovery(
            _config(max_runtime_seconds=10),
            mailbox_path=tmp_path / "handoff.sqlite3",
            session_factory=lambda config, state, headless: opened.append(config) or FakeSession(),
        )
    assert opened == []


def test_check_session_opens_session_through_factory() -> None:
    session = FakeSession(cookies=[{"name": "c_user", "value": "100012345"}])
    status = check_session(_config(), storage_state=None, session_factory=lambda config, state, headless: session)

    assert status.logged
    assert status.user_name == "100012345"
    assert session.exited == 1


def test_run_dispatch_publishes_without_opening_a_browser() -> None:
    publisher = FakePublisher()
    sleep = SleepRecorder()
    messages: list[ControlMessage] = []
    seen: list[Coordinator] = []

    done = run_dispatch(
        _config(),
        [DispatchTarget("t1", "One"), DispatchTarget("t2", "Two"), DispatchTarget("t3", "Three", selected=False)],
        "Hello",
        publisher,
        on_message=messages.append,
        on_coordinator=seen.append,
        sleep_fn=sleep,
    )

    assert isinstance(done, Done)
    assert [outcome.id for outcome in done.results] == ["t1", "t2"]
    assert publisher.calls == ["t1", "t2"]
    assert sleep.calls == [3.0]
    assert len(seen) == 1
    assert sum(1 for message in messages if isinstance(message, Progress)) == 4


def test_run_dispatch_resumes_from_start_index() -> None:
    publisher = FakePublisher()
    done = run_dispatch(
        _config(),
        [DispatchTarget("t1", "One"), DispatchTarget("t2", "Two")],
        "Hello",
        publisher,
        start_index=1,
        delay_seconds=1.0,
        sleep_fn=SleepRecorder(),
    )
    assert publisher.calls == ["t2"]
    assert [outcome.id for outcome in done.results] == ["t2"]
