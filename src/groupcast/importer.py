"""Bulk import of dispatch targets from pasted JSON, group URLs, or bare ids."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import json
import re

from .errors import BulkImportError
from .models import CandidateEntity, DispatchTarget

_TOKEN_SPLIT_RE = re.compile(r"[\s,;]+")
_GROUP_URL_ID_RE = re.compile(r"/groups/(\d{5,20})(?:[/?#]|$)")
_BARE_ID_RE = re.compile(r"^\d{5,20}$")
_TOKEN_WRAPPERS = "[](){}<>\"'"


def placeholder_name(group_id: str) -> str:
    return f"Group {group_id}"


def parse_bulk_import(text: str) -> list[CandidateEntity]:
    """Parse a JSON array of ``{id, name}`` objects, or free text of group URLs and numeric ids.

    Results keep first-appearance order and contain each id once.
    """
    stripped = text.strip()
    if not stripped:
        raise BulkImportError("Nothing to import: input is empty.")

    from_json = _parse_json_entries(stripped)
    if from_json:
        return from_json

    seen: set[str] = set()
    candidates: list[CandidateEntity] = []
    for token in _TOKEN_SPLIT_RE.split(stripped):
        group_id = _token_group_id(token)
        if group_id is None or group_id in seen:
            continue
        seen.add(group_id)
        candidates.append(CandidateEntity(id=group_id, name=placeholder_name(group_id)))

    if not candidates:
        raise BulkImportError(
            "No valid group ids found. Paste a JSON array of {id, name}, group URLs, or numeric group ids."
        )
    return candidates


def merge_candidates(
    existing: Sequence[DispatchTarget],
    candidates: Iterable[CandidateEntity],
    *,
    selected: bool = True,
) -> tuple[list[DispatchTarget], int]:
    """Append candidates whose id is not already a target. Return the merged list and the added count."""
    merged = list(existing)
    known = {target.id for target in merged}
    added = 0
    for candidate in candidates:
        if candidate.id in known:
            continue
        known.add(candidate.id)
        merged.append(DispatchTarget(id=candidate.id, name=candidate.name, selected=selected))
        added += 1
    return merged, added


def _parse_json_entries(text: str) -> list[CandidateEntity]:
    try:
        data = json.loads(text)
    except ValueError:
        return []
    if not isinstance(data, list):
        return []

    seen: set[str] = set()
    candidates: list[CandidateEntity] = []
    for entry in data:
        if not isinstance(entry, dict) or entry.get("id") in (None, ""):
            continue
        group_id = str(entry["id"]).strip()
        if not group_id or group_id in seen:
            continue
        seen.add(group_id)
        name = str(entry.get("name") or "").strip() or placeholder_name(group_id)
        candidates.append(CandidateEntity(id=group_id, name=name))
    return candidates


def _token_group_id(token: str) -> str | None:
    if not token:
        return None
    match = _GROUP_URL_ID_RE.search(token)
    if match:
        return match.group(1)
    bare = token.strip(_TOKEN_WRAPPERS)
    if _BARE_ID_RE.match(bare):
        return bare
    return None
