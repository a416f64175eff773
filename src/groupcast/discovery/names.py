"""Display-name quality filter shared by DOM scanning and regex fallbacks."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import re

from groupcast.config import DEFAULT_BANNED_NAME_TERMS

MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 100

_DIGITS_ONLY_RE = re.compile(r"^\d+$")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class NameFilter:
    """Reject names that are too short/long, purely numeric, or membership-count labels."""

    banned_terms: tuple[str, ...] = DEFAULT_BANNED_NAME_TERMS

    @classmethod
    def from_terms(cls, terms: Iterable[str]) -> NameFilter:
        return cls(banned_terms=tuple(term.strip().lower() for term in terms if term.strip()))

    def accepts(self, name: str | None) -> bool:
        if name is None:
            return False
        cleaned = clean_name(name)
        if len(cleaned) < MIN_NAME_LENGTH or len(cleaned) >= MAX_NAME_LENGTH:
            return False
        if _DIGITS_ONLY_RE.fullmatch(cleaned):
            return False
        lowered = cleaned.lower()
        return not any(term.lower() in lowered for term in self.banned_terms)


def clean_name(raw: str) -> str:
    return _WHITESPACE_RE.sub(" ", raw).strip()
