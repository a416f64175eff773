from __future__ import annotations

import json
from typing import Any

import pytest

from groupcast.config import CollectorConfig, CoordinatorConfig, RuntimeConfig
from groupcast.coordinator import (
    READY_STATE_JS,
    CollectionStatus,
    Coordinator,
    find_dtsg_token,
)
from groupcast.discovery.collector import SCROLL_HEIGHT_JS
from groupcast.errors import BrowserError, DispatchError
from groupcast.handoff.mailbox import InMemoryMailbox
from groupcast.messages import (
    CheckSession,
    ControlMessage,
    Done,
    GroupsCollected,
    GroupsLoaded,
    LoadGroups,
    Log,
    PostAll,
    Progress,
    SessionStatus,
)
from groupcast.models import CandidateEntity, DispatchOutcome, DispatchTarget, PostPayload, PublishResult
from groupcast.testing.time_control import SleepRecorder

LISTING_HTML = """
<div role="listitem"><a href="/groups/1111111/">Alpha Link Text</a></div>
<div role="listitem"><a href="/groups/2222222/">Beta Builders</a></div>
"""

GRAPHQL_BODY = "for (;;);" + json.dumps(
    {
        "data": {
            "viewer": {
                "groups": {
                    "edges": [
                        {"node": {"__typename": "Group", "id": "1111111", "name": "Alpha Group"}},
                        {"node": {"__typename": "Group", "id": "3333333", "name": "Gamma Group"}},
                    ]
                }
            }
        }
    }
)


class FakeResponse:
    def __init__(self, url: str, body: str) -> None:
        self.url = url
        self._body = body

    def text(self) -> str:
        return self._body


class FakeListingPage:
    def __init__(
        self,
        *,
        landing_url: str = "https://www.facebook.com/groups/joins/",
        ready_state: str = "complete",
        goto_error: Exception | None = None,
        html: str = LISTING_HTML,
    ) -> None:
        self.url = "about:blank"
        self.landing_url = landing_url
        self.ready_state = ready_state
        self.goto_error = goto_error
        self.html = html
        self.handlers: list[Any] = []
        self.goto_calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    def on(self, event: str, handler: Any) -> None:
        self.handlers.append(handler)

    def goto(self, url: str, **kwargs: Any) -> None:
        self.goto_calls.append((url, kwargs))
        if self.goto_error is not None:
            raise self.goto_error
        self.url = self.landing_url
        for handler in self.handlers:
            handler(FakeResponse("https://www.facebook.com/api/graphql/", GRAPHQL_BODY))

    def evaluate(self, expression: str) -> Any:
        if expression == READY_STATE_JS:
            return self.ready_state
        if expression == SCROLL_HEIGHT_JS:
            return 1000
        return None

    def content(self) -> str:
        return self.html

    def wait_for_timeout(self, timeout_ms: float) -> None:
        return None

    def title(self) -> str:
        return "Groups | Facebook"

    def inner_text(self, selector: str, timeout: float | None = None) -> str:
        return "Your groups"

    def close(self) -> None:
        self.closed = True


class FakeSession:
    def __init__(
        self,
        *,
        page: FakeListingPage | None = None,
        cookies: list[dict[str, Any]] | None = None,
        open_pages: list[Any] | None = None,
        new_page_error: Exception | None = None,
        open_error: Exception | None = None,
    ) -> None:
        self.page = page or FakeListingPage()
        self.cookie_jar = cookies or []
        self.open_pages = open_pages or []
        self.new_page_error = new_page_error
        self.open_error = open_error
        self.cookie_reads = 0

    def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error

    def close(self) -> None:
        return None

    def new_page(self) -> FakeListingPage:
        if self.new_page_error is not None:
            raise self.new_page_error
        return self.page

    def pages(self) -> list[Any]:
        return self.open_pages

    def cookies(self, urls: Any = None) -> list[dict[str, Any]]:
        self.cookie_reads += 1
        return self.cookie_jar


class FakeOpenPage:
    def __init__(self, html: str) -> None:
        self._html = html

    def content(self) -> str:
        return self._html


class FakePublisher:
    def __init__(self, failures: dict[str, str] | None = None) -> None:
        self.failures = failures or {}
        self.calls: list[tuple[str, PostPayload]] = []

    def publish(self, target_id: str, payload: PostPayload) -> PublishResult:
        self.calls.append((target_id, payload))
        if target_id in self.failures:
            return PublishResult(success=False, error=self.failures[target_id])
        return PublishResult(success=True, post_id=f"{target_id}_1")


def _config() -> RuntimeConfig:
    return RuntimeConfig(
        collector=CollectorConfig(scroll_wait_seconds=0, scroll_jitter_seconds=0, idle_ticks=2),
        coordinator=CoordinatorConfig(attach_attempts=3, attach_interval_seconds=2.0),
    )


def _coordinator(session: FakeSession, **kwargs: Any) -> tuple[Coordinator, list[ControlMessage], InMemoryMailbox]:
    emitted: list[ControlMessage] = []
    mailbox = InMemoryMailbox()
    kwargs.setdefault("sleep_fn", SleepRecorder())
    coordinator = Coordinator(session, _config(), mailbox=mailbox, emit=emitted.append, **kwargs)
    return coordinator, emitted, mailbox


def test_session_cookie_marks_logged_in_and_is_cached() -> None:
    session = FakeSession(cookies=[{"name": "datr", "value": "x"}, {"name": "c_user", "value": "100012345"}])
    coordinator, _, _ = _coordinator(session)

    assert coordinator.handle(CheckSession()) == SessionStatus(logged=True, user_name="100012345")
    assert coordinator.check_session().logged
    assert session.cookie_reads == 1


def test_session_token_in_open_page_marks_logged_in() -> None:
    page = FakeOpenPage('<input type="hidden" name="fb_dtsg" value="AQHx:42" />')
    coordinator, _, _ = _coordinator(FakeSession(open_pages=[page]))

    assert coordinator.check_session() == SessionStatus(logged=True, user_name="Facebook User")


def test_logged_out_result_is_not_cached() -> None:
    session = FakeSession(cookies=[{"name": "c_user", "value": "deleted"}])
    coordinator, _, _ = _coordinator(session)

    assert coordinator.check_session() == SessionStatus(logged=False)
    assert coordinator.check_session() == SessionStatus(logged=False)
    assert session.cookie_reads == 2


def test_session_probe_failure_reports_logged_out() -> None:
    coordinator, _, _ = _coordinator(FakeSession(open_error=BrowserError("no browser")))
    assert coordinator.check_session() == SessionStatus(logged=False)


def test_find_dtsg_token_patterns() -> None:
    assert find_dtsg_token('["DTSGInitialData",[],{"token":"abc"}]') == "abc"
    assert find_dtsg_token('"dtsg":{"token":"def"}') == "def"
    assert find_dtsg_token("<html></html>") is None


def test_load_groups_captures_and_publishes_to_mailbox() -> None:
    session = FakeSession()
    notified: list[GroupsCollected] = []
    coordinator, emitted, mailbox = _coordinator(session, notify=notified.append)

    assert coordinator.handle(LoadGroups()) is None

    payload = mailbox.read()
    assert payload is not None
    assert payload.results == (
        CandidateEntity("1111111", "Alpha Group"),
        CandidateEntity("3333333", "Gamma Group"),
        CandidateEntity("2222222", "Beta Builders"),
    )
    assert [message.groups for message in notified] == [payload.results]
    assert session.page.goto_calls == [
        ("https://www.facebook.com/groups/joins/", {"wait_until": "load", "timeout": 30_000})
    ]
    assert session.page.closed
    assert [message.message for message in emitted if isinstance(message, Log)][-1] == "Capture finished: 3 groups."


def test_load_timeout_is_reported_and_page_closed() -> None:
    page = FakeListingPage(goto_error=TimeoutError("30000ms exceeded"))
    coordinator, emitted, mailbox = _coordinator(FakeSession(page=page))

    start = coordinator.start_collection()

    assert start.status is CollectionStatus.LOAD_TIMEOUT
    assert page.closed
    assert mailbox.read() is None

    result = coordinator.load_groups()
    assert isinstance(result, GroupsLoaded)
    assert result.error == "Timed out loading the groups listing page."
    assert result in emitted


def test_login_wall_requires_login_and_clears_session_cache() -> None:
    page = FakeListingPage(landing_url="https://www.facebook.com/login/?next=%2Fgroups%2Fjoins%2F")
    session = FakeSession(page=page, cookies=[{"name": "c_user", "value": "100012345"}])
    coordinator, _, _ = _coordinator(session)
    coordinator.check_session()

    start = coordinator.start_collection()

    assert start.status is CollectionStatus.LOGIN_REQUIRED
    assert "groupcast auth login" in start.message
    coordinator.check_session()
    assert session.cookie_reads == 2


def test_page_never_ready_cannot_attach() -> None:
    sleep = SleepRecorder()
    page = FakeListingPage(ready_state="loading")
    coordinator, _, _ = _coordinator(FakeSession(page=page), sleep_fn=sleep)

    start = coordinator.start_collection()

    assert start.status is CollectionStatus.COULD_NOT_ATTACH
    assert start.attempts == 3
    assert sleep.calls == [2.0, 2.0]
    assert page.closed


def test_new_page_failure_cannot_attach() -> None:
    coordinator, _, _ = _coordinator(FakeSession(new_page_error=BrowserError("context gone")))
    result = coordinator.load_groups()
    assert result == GroupsLoaded(groups=(), error="context gone")


def test_run_collection_requires_started_page() -> None:
    coordinator, _, _ = _coordinator(FakeSession(page=FakeListingPage(ready_state="loading")))
    with pytest.raises(BrowserError, match="could_not_attach"):
        coordinator.run_collection(coordinator.start_collection())


def test_post_all_relays_progress_and_done() -> None:
    publisher = FakePublisher({"t2": "(#200) Permissions error"})
    sleep = SleepRecorder()
    coordinator, emitted, _ = _coordinator(FakeSession(), publisher=publisher, sleep_fn=sleep)
    request = PostAll(
        targets=(DispatchTarget("t1", "One"), DispatchTarget("skip", "Skip", selected=False), DispatchTarget("t2", "Two")),
        message="Hello",
        delay_seconds=5.0,
        image_urls=("https://img.test/a.png",),
    )

    done = coordinator.handle(request)

    assert done == Done(
        results=(DispatchOutcome("t1", "One", True), DispatchOutcome("t2", "Two", False, "(#200) Permissions error"))
    )
    assert [target_id for target_id, _ in publisher.calls] == ["t1", "t2"]
    assert publisher.calls[0][1] == PostPayload(message="Hello", image_urls=("https://img.test/a.png",))
    assert sleep.calls == [5.0]
    progress = [message for message in emitted if isinstance(message, Progress)]
    assert [(p.current, p.total, p.state, p.success) for p in progress] == [
        (1, 2, "sending", None),
        (1, 2, "success", True),
        (2, 2, "sending", None),
        (2, 2, "failed", False),
    ]
    assert emitted[-1] == done


def test_pause_and_resume_through_coordinator() -> None:
    coordinator: Coordinator

    def sink(message: ControlMessage) -> None:
        if isinstance(message, Progress) and message.current == 1 and message.state == "success":
            coordinator.pause_dispatch()

    coordinator = Coordinator(
        FakeSession(),
        _config(),
        mailbox=InMemoryMailbox(),
        publisher=FakePublisher(),
        emit=sink,
        sleep_fn=SleepRecorder(),
    )
    targets = (DispatchTarget("t1", "One"), DispatchTarget("t2", "Two"))

    paused = coordinator.post_to_targets(PostAll(targets=targets, message="Hi"))
    assert paused.paused
    assert [outcome.id for outcome in paused.results] == ["t1"]

    finished = coordinator.resume_dispatch()
    assert finished is not None
    assert not finished.paused
    assert [outcome.id for outcome in finished.results] == ["t1", "t2"]


def test_post_all_without_selection_or_publisher() -> None:
    coordinator, emitted, _ = _coordinator(FakeSession(), publisher=FakePublisher())
    done = coordinator.handle(PostAll(targets=(DispatchTarget("t1", "One", selected=False),), message="Hi"))
    assert done == Done(results=())
    assert emitted == [done]

    bare, _, _ = _coordinator(FakeSession())
    with pytest.raises(DispatchError, match="No publisher"):
        bare.handle(PostAll(targets=(DispatchTarget("t1", "One"),), message="Hi"))


def test_failing_consumer_sink_does_not_break_dispatch() -> None:
    def sink(message: ControlMessage) -> None:
        raise RuntimeError("consumer gone")

    coordinator = Coordinator(
        FakeSession(), _config(), mailbox=InMemoryMailbox(), publisher=FakePublisher(), emit=sink, sleep_fn=SleepRecorder()
    )
    done = coordinator.post_to_targets(PostAll(targets=(DispatchTarget("t1", "One"),), message="Hi"))
    assert done.results[0].success


def test_unsupported_messages_are_ignored() -> None:
    coordinator, _, _ = _coordinator(FakeSession())
    assert coordinator.handle(Log("hello")) is None
