"""Append-only, deduplicated candidate accumulation with source precedence."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from groupcast.models import CandidateEntity, DiscoverySource


@dataclass(frozen=True)
class MergeReport:
    added: int = 0
    renamed: int = 0
    ignored: int = 0


class ResultSet:
    """Map of id -> candidate, in first-discovery order.

    A repeated id never adds a second entry. Its name is only replaced when the
    new source ranks strictly higher than the source that produced the current name.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CandidateEntity] = {}
        self._sources: dict[str, DiscoverySource] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._entries

    def get(self, candidate_id: str) -> CandidateEntity | None:
        return self._entries.get(candidate_id)

    def source_of(self, candidate_id: str) -> DiscoverySource | None:
        return self._sources.get(candidate_id)

    def add(self, candidate: CandidateEntity, source: DiscoverySource) -> bool:
        """Record a candidate; return True when it changed the set."""
        current_source = self._sources.get(candidate.id)
        if current_source is None:
            self._entries[candidate.id] = candidate
            self._sources[candidate.id] = source
            return True
        if source.precedence > current_source.precedence:
            self._entries[candidate.id] = candidate
            self._sources[candidate.id] = source
            return True
        return False

    def merge(self, candidates: Iterable[CandidateEntity], source: DiscoverySource) -> MergeReport:
        added = renamed = ignored = 0
        for candidate in candidates:
            existed = candidate.id in self._entries
            if self.add(candidate, source):
                if existed:
                    renamed += 1
                else:
                    added += 1
            else:
                ignored += 1
        return MergeReport(added=added, renamed=renamed, ignored=ignored)

    def to_list(self) -> list[CandidateEntity]:
        return list(self._entries.values())
