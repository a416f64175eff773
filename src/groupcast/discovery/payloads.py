"""Candidate extraction from raw response bodies and inline script text."""

from __future__ import annotations

import json
import re

from groupcast.discovery.names import NameFilter, clean_name
from groupcast.discovery.shapes import DEFAULT_MAX_DEPTH, walk_group_shapes
from groupcast.logging import get_logger
from groupcast.models import CandidateEntity

logger = get_logger(__name__)

ANTI_HIJACK_PREFIX = "for (;;);"
MIN_FRAGMENT_CHARS = 20

_ID_NAME_RE = re.compile(r'"id":"(\d+)","name":"((?:[^"\\]|\\.)+)"')
_GROUP_ID_NAME_RE = re.compile(r'"group_id":"(\d+)"[^}]*?"name":"((?:[^"\\]|\\.)+)"')
_MIN_FALLBACK_ID_DIGITS = 5


def extract_candidates_from_text(
    text: str,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    name_filter: NameFilter | None = None,
) -> tuple[CandidateEntity, ...]:
    """Parse newline-delimited JSON fragments plus a regex pass; first discovery of an id wins."""
    names = name_filter or NameFilter()
    found: dict[str, str] = {}

    for fragment in iter_json_fragments(text):
        try:
            data = json.loads(fragment)
        except ValueError:
            continue
        for shape in walk_group_shapes(data, max_depth=max_depth):
            found.setdefault(shape.id, shape.name)

    for group_id, raw_name in _ID_NAME_RE.findall(text):
        if len(group_id) < _MIN_FALLBACK_ID_DIGITS or group_id in found:
            continue
        name = _decode_json_string(raw_name)
        if names.accepts(name):
            found[group_id] = clean_name(name)

    for group_id, raw_name in _GROUP_ID_NAME_RE.findall(text):
        if group_id in found:
            continue
        name = _decode_json_string(raw_name)
        if names.accepts(name):
            found[group_id] = clean_name(name)

    return tuple(CandidateEntity(id=group_id, name=name) for group_id, name in found.items())


def iter_json_fragments(text: str):
    """Yield newline-delimited JSON fragments with the anti-hijacking prefix removed."""
    for line in text.split("\n"):
        fragment = line.strip()
        if len(fragment) < MIN_FRAGMENT_CHARS:
            continue
        if fragment.startswith(ANTI_HIJACK_PREFIX):
            fragment = fragment[len(ANTI_HIJACK_PREFIX) :].lstrip()
        yield fragment


def _decode_json_string(raw: str) -> str:
    try:
        decoded = json.loads(f'"{raw}"')
    except ValueError:
        logger.debug("Keeping undecodable name literal as-is: %r", raw[:80])
        return raw
    return decoded if isinstance(decoded, str) else raw
