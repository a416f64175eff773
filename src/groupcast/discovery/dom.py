"""Candidate extraction from rendered markup and inline script tags."""

from __future__ import annotations

from collections.abc import Iterable
import re

from bs4 import BeautifulSoup, Tag

from groupcast.config import DEFAULT_RESERVED_SLUGS
from groupcast.discovery.names import NameFilter, clean_name
from groupcast.discovery.payloads import extract_candidates_from_text
from groupcast.discovery.shapes import DEFAULT_MAX_DEPTH
from groupcast.models import CandidateEntity

_GROUP_SEGMENT_RE = re.compile(r"/groups/([^/?#]+)")
_DIGITS_ONLY_RE = re.compile(r"^\d+$")
_SCRIPT_HINTS = ("Group", "groups", "group_id")


class DomScanner:
    """Pure scanner: ``scan(html)`` has no side effects and never raises on odd markup."""

    def __init__(
        self,
        *,
        reserved_slugs: Iterable[str] = DEFAULT_RESERVED_SLUGS,
        name_filter: NameFilter | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._reserved_slugs = frozenset(slug.strip().lower() for slug in reserved_slugs)
        self._name_filter = name_filter or NameFilter()
        self._max_depth = max_depth

    def scan(self, html: str) -> tuple[CandidateEntity, ...]:
        soup = _parse(html)
        anchors = soup.select('a[href*="/groups/"]')
        merged: dict[str, CandidateEntity] = {}
        for candidate in self._numeric_link_candidates(anchors):
            merged.setdefault(candidate.id, candidate)
        for candidate in self._slug_link_candidates(anchors):
            merged.setdefault(candidate.id, candidate)
        return tuple(merged.values())

    def scan_inline_scripts(self, html: str) -> tuple[CandidateEntity, ...]:
        soup = _parse(html)
        found: dict[str, CandidateEntity] = {}
        for script in soup.find_all("script"):
            text = script.string or script.get_text() or ""
            if not any(hint in text for hint in _SCRIPT_HINTS):
                continue
            for candidate in extract_candidates_from_text(
                text,
                max_depth=self._max_depth,
                name_filter=self._name_filter,
            ):
                found.setdefault(candidate.id, candidate)
        return tuple(found.values())

    def _numeric_link_candidates(self, anchors: list[Tag]) -> list[CandidateEntity]:
        candidates: list[CandidateEntity] = []
        seen: set[str] = set()
        for anchor in anchors:
            segment = _group_segment(anchor)
            if segment is None or not _DIGITS_ONLY_RE.fullmatch(segment) or segment in seen:
                continue
            seen.add(segment)
            name = self._resolve_name(anchor)
            if name is not None:
                candidates.append(CandidateEntity(id=segment, name=name))
        return candidates

    def _slug_link_candidates(self, anchors: list[Tag]) -> list[CandidateEntity]:
        candidates: list[CandidateEntity] = []
        seen: set[str] = set()
        for anchor in anchors:
            segment = _group_segment(anchor)
            if segment is None or _DIGITS_ONLY_RE.fullmatch(segment) or segment in seen:
                continue
            if segment.lower() in self._reserved_slugs:
                continue
            seen.add(segment)
            name = self._resolve_name(anchor)
            if name is not None:
                candidates.append(CandidateEntity(id=segment, name=name))
        return candidates

    def _resolve_name(self, anchor: Tag) -> str | None:
        own_text = clean_name(anchor.get_text(" ", strip=True))
        if self._name_filter.accepts(own_text):
            return own_text

        container = anchor.find_parent(attrs={"role": "listitem"}) or anchor.find_parent("div")
        if container is None:
            return None
        for span in container.find_all("span"):
            text = clean_name(span.get_text(" ", strip=True))
            if self._name_filter.accepts(text):
                return text
        return None


def _group_segment(anchor: Tag) -> str | None:
    href = anchor.get("href")
    if not isinstance(href, str):
        return None
    match = _GROUP_SEGMENT_RE.search(href)
    if match is None:
        return None
    segment = match.group(1).strip()
    return segment or None


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")
