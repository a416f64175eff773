"""Saved login sessions: one Playwright storage_state file per profile."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import json
import os
from pathlib import Path
import re
import tempfile
from typing import Any

from .browser.session import PlaywrightBrowserSession
from .config import RuntimeConfig, state_dir
from .errors import AuthError, BrowserError
from .logging import get_logger

logger = get_logger(__name__)

PROFILE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")
SESSION_COOKIE_NAME = "c_user"
STATE_FILENAME = "storage_state.json"

StorageCaptureFn = Callable[[RuntimeConfig, str], dict[str, Any]]
PromptFn = Callable[[str], str]


@dataclass(frozen=True)
class LoginResult:
    profile: str
    storage_state_path: Path
    cookie_count: int
    has_session_cookie: bool


def profiles_root(config_path: str | Path | None = None) -> Path:
    return state_dir(config_path) / "profiles"


def validate_profile_name(profile_name: str) -> str:
    name = profile_name.strip()
    if PROFILE_NAME_RE.match(name) is None:
        raise AuthError(
            f"Invalid profile name '{profile_name}': use up to 64 letters, digits, '.', '_' or '-', "
            "starting with a letter or digit."
        )
    return name


def resolve_profile_name(profile_name: str | None, config: RuntimeConfig) -> str:
    return validate_profile_name(profile_name or config.app.default_profile)


def storage_state_path(profile_name: str, config_path: str | Path | None = None) -> Path:
    return profiles_root(config_path) / validate_profile_name(profile_name) / STATE_FILENAME


def existing_storage_state(profile_name: str, config_path: str | Path | None = None) -> Path | None:
    """Return the profile's saved state file, or None when the profile never logged in."""
    path = storage_state_path(profile_name, config_path)
    try:
        if not path.exists():
            return None
        if not path.is_file():
            raise AuthError(f"Saved session '{path}' is not a regular file.")
    except OSError as exc:
        raise AuthError(f"Cannot inspect saved session '{path}': {exc}") from exc
    return path


def has_session_cookie(storage_state: dict[str, Any]) -> bool:
    return any(
        isinstance(cookie, dict) and cookie.get("name") == SESSION_COOKIE_NAME
        for cookie in storage_state.get("cookies") or []
    )


def login_and_save_storage_state(
    config: RuntimeConfig,
    profile_name: str | None = None,
    config_path: str | Path | None = None,
    *,
    capture_fn: StorageCaptureFn | None = None,
) -> LoginResult:
    """Let the user log in through a headed browser, then save the session owner-readable only."""
    profile = resolve_profile_name(profile_name, config)
    capture = capture_fn or capture_storage_state_via_playwright
    state = capture(config, config.platform.origin)
    validate_storage_state(state)

    path = storage_state_path(profile, config_path)
    write_storage_state_secure(path, state)

    logged_in = has_session_cookie(state)
    if not logged_in:
        logger.warning("Saved session for '%s' carries no %s cookie; discovery will likely hit a login wall.",
                       profile, SESSION_COOKIE_NAME)
    return LoginResult(
        profile=profile,
        storage_state_path=path,
        cookie_count=len(state["cookies"]),
        has_session_cookie=logged_in,
    )


def capture_storage_state_via_playwright(
    config: RuntimeConfig,
    login_url: str,
    *,
    prompt_fn: PromptFn = input,
) -> dict[str, Any]:
    try:
        with PlaywrightBrowserSession(config, headless=False) as session:
            page = session.new_page()
            page.goto(login_url, wait_until="load", timeout=session.plan.navigation_timeout_ms)
            prompt_fn(f"Log in at {login_url} in the browser window, then press Enter to save the session...")
            return session.storage_state()
    except BrowserError as exc:
        raise AuthError(f"Login capture failed: {exc}") from exc
    except Exception as exc:
        raise AuthError(f"Login capture at '{login_url}' failed: {exc}") from exc


def validate_storage_state(storage_state: dict[str, Any]) -> None:
    cookies = storage_state.get("cookies")
    origins = storage_state.get("origins")
    if not isinstance(cookies, list) or not isinstance(origins, list):
        raise AuthError("Captured session is invalid: 'cookies' and 'origins' must both be lists.")
    if not cookies and not origins:
        raise AuthError("Captured session is empty; finish logging in before pressing Enter.")


def write_storage_state_secure(path: Path, storage_state: dict[str, Any]) -> None:
    """Atomically replace ``path`` with the serialized state, mode 0600."""
    body = json.dumps(storage_state, indent=2, sort_keys=True) + "\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # mkstemp creates the file 0600 already
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise AuthError(f"Cannot save session under '{path.parent}': {exc}") from exc

    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as stream:
            stream.write(body)
            stream.flush()
            os.fsync(stream.fileno())
        os.replace(temp_path, path)
        os.chmod(path, 0o600)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise AuthError(f"Cannot save session to '{path}': {exc}") from exc


def login_command_hint(profile_name: str, config_path: str | Path | None = None) -> str:
    command = f"groupcast auth login --profile {profile_name}"
    if config_path is None:
        return command
    return f"{command} --path {Path(config_path).expanduser()}"
