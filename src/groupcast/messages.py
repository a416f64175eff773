"""Closed set of control messages exchanged between consumer, coordinator, and collector.

Every message crosses a context boundary as a plain dict with a ``type``
discriminator. ``parse_message`` maps a dict back to its variant and returns
``None`` for unrecognized types or malformed fields instead of raising.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ClassVar, Union

from groupcast.logging import get_logger
from groupcast.models import (
    CandidateEntity,
    DispatchOutcome,
    DispatchTarget,
    candidate_to_dict,
    outcome_to_dict,
    target_to_dict,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckSession:
    type: ClassVar[str] = "CHECK_SESSION"


@dataclass(frozen=True)
class SessionStatus:
    type: ClassVar[str] = "SESSION_STATUS"
    logged: bool
    user_name: str | None = None


@dataclass(frozen=True)
class LoadGroups:
    type: ClassVar[str] = "LOAD_GROUPS"


@dataclass(frozen=True)
class GroupsLoaded:
    type: ClassVar[str] = "GROUPS_LOADED"
    groups: tuple[CandidateEntity, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class PostAll:
    type: ClassVar[str] = "POST_ALL"
    targets: tuple[DispatchTarget, ...]
    message: str
    delay_seconds: float = 3.0
    image_urls: tuple[str, ...] = ()
    image_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class Progress:
    type: ClassVar[str] = "PROGRESS"
    current: int
    total: int
    target_id: str | None = None
    target_name: str | None = None
    state: str | None = None
    success: bool | None = None
    error: str | None = None


@dataclass(frozen=True)
class Done:
    type: ClassVar[str] = "DONE"
    results: tuple[DispatchOutcome, ...] = ()
    paused: bool = False


@dataclass(frozen=True)
class BeginScan:
    type: ClassVar[str] = "BEGIN_SCAN"


@dataclass(frozen=True)
class GroupsCollected:
    type: ClassVar[str] = "GROUPS_COLLECTED"
    groups: tuple[CandidateEntity, ...] = ()
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str | None = None


@dataclass(frozen=True)
class Log:
    type: ClassVar[str] = "LOG"
    message: str


ControlMessage = Union[
    CheckSession,
    SessionStatus,
    LoadGroups,
    GroupsLoaded,
    PostAll,
    Progress,
    Done,
    BeginScan,
    GroupsCollected,
    Log,
]

MESSAGE_TYPES: dict[str, type] = {
    variant.type: variant
    for variant in (
        CheckSession,
        SessionStatus,
        LoadGroups,
        GroupsLoaded,
        PostAll,
        Progress,
        Done,
        BeginScan,
        GroupsCollected,
        Log,
    )
}


def message_to_dict(message: ControlMessage) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": message.type}
    if isinstance(message, SessionStatus):
        payload.update(logged=message.logged, userName=message.user_name)
    elif isinstance(message, GroupsLoaded):
        payload["groups"] = [candidate_to_dict(group) for group in message.groups]
        if message.error is not None:
            payload["error"] = message.error
    elif isinstance(message, PostAll):
        payload["payload"] = {
            "groups": [target_to_dict(target) for target in message.targets],
            "message": message.message,
            "delaySeconds": message.delay_seconds,
            "photoUrls": list(message.image_urls),
            "photoFiles": list(message.image_files),
        }
    elif isinstance(message, Progress):
        payload.update(
            current=message.current,
            total=message.total,
            groupId=message.target_id,
            groupName=message.target_name,
            state=message.state,
            success=message.success,
            error=message.error,
        )
    elif isinstance(message, Done):
        payload["results"] = [outcome_to_dict(outcome) for outcome in message.results]
        payload["paused"] = message.paused
    elif isinstance(message, GroupsCollected):
        payload["groups"] = [candidate_to_dict(group) for group in message.groups]
        payload["completedAt"] = message.completed_at.isoformat()
        payload["runId"] = message.run_id
    elif isinstance(message, Log):
        payload["message"] = message.message
    return payload


def parse_message(data: Mapping[str, Any]) -> ControlMessage | None:
    """Return the message variant for ``data`` or None when its type is not recognized or its fields are malformed."""
    if not isinstance(data, Mapping):
        return None
    kind = data.get("type")
    if kind not in MESSAGE_TYPES:
        return None
    try:
        return _build_message(kind, data)
    except (TypeError, ValueError) as exc:
        logger.debug("Dropping malformed %s message: %s", kind, exc)
        return None


def _build_message(kind: str, data: Mapping[str, Any]) -> ControlMessage | None:
    if kind == CheckSession.type:
        return CheckSession()
    if kind == LoadGroups.type:
        return LoadGroups()
    if kind == BeginScan.type:
        return BeginScan()
    if kind == SessionStatus.type:
        user_name = data.get("userName")
        return SessionStatus(logged=bool(data.get("logged")), user_name=str(user_name) if user_name else None)
    if kind == GroupsLoaded.type:
        return GroupsLoaded(groups=_parse_candidates(data.get("groups")), error=_optional_str(data.get("error")))
    if kind == PostAll.type:
        body = data.get("payload")
        if not isinstance(body, Mapping):
            return None
        return PostAll(
            targets=_parse_targets(body.get("groups")),
            message=str(body.get("message") or ""),
            delay_seconds=_float_or(body.get("delaySeconds"), 3.0),
            image_urls=tuple(str(url) for url in body.get("photoUrls") or ()),
            image_files=tuple(str(path) for path in body.get("photoFiles") or ()),
        )
    if kind == Progress.type:
        return Progress(
            current=int(data.get("current") or 0),
            total=int(data.get("total") or 0),
            target_id=_optional_str(data.get("groupId")),
            target_name=_optional_str(data.get("groupName")),
            state=_optional_str(data.get("state")),
            success=data.get("success") if isinstance(data.get("success"), bool) else None,
            error=_optional_str(data.get("error")),
        )
    if kind == Done.type:
        return Done(results=_parse_outcomes(data.get("results")), paused=bool(data.get("paused")))
    if kind == GroupsCollected.type:
        raw_completed = data.get("completedAt")
        completed_at = (
            datetime.fromisoformat(raw_completed) if isinstance(raw_completed, str) else datetime.now(timezone.utc)
        )
        return GroupsCollected(
            groups=_parse_candidates(data.get("groups")),
            completed_at=completed_at,
            run_id=_optional_str(data.get("runId")),
        )
    return Log(message=str(data.get("message") or ""))


def post_all_image_paths(message: PostAll) -> tuple[Path, ...]:
    return tuple(Path(raw).expanduser() for raw in message.image_files)


def _parse_candidates(raw: Any) -> tuple[CandidateEntity, ...]:
    if not isinstance(raw, list | tuple):
        return ()
    return tuple(
        CandidateEntity(id=str(entry["id"]), name=str(entry.get("name") or ""))
        for entry in raw
        if isinstance(entry, Mapping) and entry.get("id") is not None
    )


def _parse_targets(raw: Any) -> tuple[DispatchTarget, ...]:
    if not isinstance(raw, list | tuple):
        return ()
    return tuple(
        DispatchTarget(
            id=str(entry["id"]),
            name=str(entry.get("name") or ""),
            selected=bool(entry.get("selected", True)),
        )
        for entry in raw
        if isinstance(entry, Mapping) and entry.get("id") is not None
    )


def _parse_outcomes(raw: Any) -> tuple[DispatchOutcome, ...]:
    if not isinstance(raw, list | tuple):
        return ()
    return tuple(
        DispatchOutcome(
            id=str(entry["id"]),
            name=str(entry.get("name") or ""),
            success=bool(entry.get("success")),
            error=_optional_str(entry.get("error")),
        )
        for entry in raw
        if isinstance(entry, Mapping) and entry.get("id") is not None
    )


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _float_or(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
