"""Data model contracts for cross-module use."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path


class DiscoverySource(str, Enum):
    DOM = "dom"
    INLINE_SCRIPT = "inline_script"
    INTERCEPTED = "intercepted"

    @property
    def precedence(self) -> int:
        return _SOURCE_PRECEDENCE[self]


_SOURCE_PRECEDENCE = {
    DiscoverySource.DOM: 1,
    DiscoverySource.INLINE_SCRIPT: 2,
    DiscoverySource.INTERCEPTED: 3,
}


@dataclass(frozen=True)
class CandidateEntity:
    id: str
    name: str


@dataclass
class DispatchTarget:
    id: str
    name: str
    selected: bool = True


@dataclass(frozen=True)
class DispatchOutcome:
    id: str
    name: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class PublishResult:
    success: bool
    post_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PostPayload:
    message: str
    image_urls: tuple[str, ...] = ()
    image_files: tuple[Path, ...] = ()


@dataclass(frozen=True)
class HandoffPayload:
    results: tuple[CandidateEntity, ...]
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str | None = None


def candidate_to_dict(candidate: CandidateEntity) -> dict[str, str]:
    return {"id": candidate.id, "name": candidate.name}


def target_to_dict(target: DispatchTarget) -> dict[str, object]:
    return {"id": target.id, "name": target.name, "selected": target.selected}


def outcome_to_dict(outcome: DispatchOutcome) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": outcome.id,
        "name": outcome.name,
        "success": outcome.success,
    }
    if outcome.error is not None:
        payload["error"] = outcome.error
    return payload
