"""Login-wall and checkpoint detection for host pages."""

from __future__ import annotations

from typing import Protocol
from urllib.parse import urlparse

_LOGIN_URL_PATHS = frozenset({"/login", "/login.php", "/login/"})
_CHECKPOINT_URL_MARKERS = ("/checkpoint", "/two_step_verification")
_LOGIN_TITLE_MARKERS = ("log in", "log into", "entrar", "iniciar sesión")
_CHECKPOINT_TITLE_MARKERS = ("security check", "checkpoint", "confirm your identity")
_LOGIN_BODY_MARKERS = (
    "log in to facebook",
    "log into facebook",
    "you must log in to continue",
    "create new account",
)
_CHECKPOINT_BODY_MARKERS = (
    "confirm your identity",
    "enter the code",
    "we noticed unusual activity",
)


class InspectablePage(Protocol):
    @property
    def url(self) -> str:
        """Current page URL."""

    def title(self) -> str:
        """Current page title."""

    def inner_text(self, selector: str, timeout: float | None = None) -> str:
        """Get text from selector."""


def detect_login_wall(current_url: str, page_title: str, body_text: str) -> str | None:
    """Return ``"checkpoint"`` or ``"login_wall"`` when the page blocks collection."""
    lowered_url = str(current_url).lower()
    lowered_title = str(page_title).lower()
    lowered_body = str(body_text).lower()
    url_path = urlparse(lowered_url).path

    if any(marker in url_path for marker in _CHECKPOINT_URL_MARKERS) or any(
        marker in lowered_title for marker in _CHECKPOINT_TITLE_MARKERS
    ) or any(marker in lowered_body for marker in _CHECKPOINT_BODY_MARKERS):
        return "checkpoint"

    if url_path in _LOGIN_URL_PATHS or any(marker in lowered_title for marker in _LOGIN_TITLE_MARKERS):
        return "login_wall"

    on_groups_path = url_path.startswith("/groups")
    if not on_groups_path and any(marker in lowered_body for marker in _LOGIN_BODY_MARKERS):
        return "login_wall"
    return None


def detect_page_login_wall(page: InspectablePage) -> str | None:
    try:
        title = page.title()
    except Exception:
        title = ""
    return detect_login_wall(page.url, title, _read_body_text(page))


def _read_body_text(page: InspectablePage) -> str:
    try:
        body_text = page.inner_text("body", timeout=2_000)
    except Exception:
        return ""
    return str(body_text)
