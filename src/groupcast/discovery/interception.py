"""Read-only observation of host-page network responses."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from groupcast.config import DEFAULT_INTERCEPT_MARKERS
from groupcast.discovery.names import NameFilter
from groupcast.discovery.payloads import extract_candidates_from_text
from groupcast.discovery.result_set import ResultSet
from groupcast.discovery.shapes import DEFAULT_MAX_DEPTH
from groupcast.logging import get_logger
from groupcast.models import DiscoverySource

logger = get_logger(__name__)

MIN_BODY_CHARS = 100


class ResponseLike(Protocol):
    @property
    def url(self) -> str:
        """Response URL."""

    def text(self) -> str:
        """Response body decoded as text."""


class ObservablePage(Protocol):
    def on(self, event: str, handler: Any) -> Any:
        """Register an event listener."""


class InterceptionLayer:
    """Queue allowlisted responses as the page receives them and mine their bodies on flush.

    The listener never touches the request or the response stream the page consumes;
    Playwright hands out its own copy of the body when ``text()`` is called.
    """

    def __init__(
        self,
        result_set: ResultSet,
        *,
        url_markers: Iterable[str] = DEFAULT_INTERCEPT_MARKERS,
        max_depth: int = DEFAULT_MAX_DEPTH,
        name_filter: NameFilter | None = None,
    ) -> None:
        self._result_set = result_set
        self._url_markers = tuple(marker for marker in url_markers if marker)
        self._max_depth = max_depth
        self._name_filter = name_filter or NameFilter()
        self._pending: list[ResponseLike] = []
        self._attached = False
        self.observed_responses = 0

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self, page: ObservablePage) -> None:
        if self._attached:
            return
        page.on("response", self._on_response)
        self._attached = True

    def matches(self, url: str) -> bool:
        return any(marker in url for marker in self._url_markers)

    def flush(self) -> int:
        """Read bodies of queued responses; a failing response is skipped, never raised."""
        pending, self._pending = self._pending, []
        processed = 0
        for response in pending:
            try:
                body = response.text()
            except Exception as exc:
                logger.debug("Skipping unreadable response %s: %s", _safe_url(response), exc)
                continue
            self.observe(_safe_url(response), body)
            processed += 1
        return processed

    def observe(self, url: str, body: str) -> None:
        if not self.matches(url) or len(body) < MIN_BODY_CHARS:
            return
        try:
            candidates = extract_candidates_from_text(
                body,
                max_depth=self._max_depth,
                name_filter=self._name_filter,
            )
        except Exception as exc:
            logger.debug("Extraction failed for %s: %s", url, exc)
            return
        self.observed_responses += 1
        report = self._result_set.merge(candidates, DiscoverySource.INTERCEPTED)
        if report.added:
            logger.debug(
                "Intercepted +%d groups from %s (total %d)",
                report.added,
                url,
                len(self._result_set),
            )

    def _on_response(self, response: ResponseLike) -> None:
        try:
            url = response.url
        except Exception:
            return
        if self.matches(url):
            self._pending.append(response)


def _safe_url(response: ResponseLike) -> str:
    try:
        return str(response.url)
    except Exception:
        return ""
