"""Playwright-backed browser session shared by the coordinator and the login flow."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from groupcast.config import BrowserConfig, RuntimeConfig
from groupcast.errors import BrowserError

PlaywrightFactory = Callable[[], AbstractContextManager[Any]]
StorageState = str | dict[str, Any] | None


class BrowserSessionManager(Protocol):
    """What the coordinator needs from a session: pages, cookies, lifecycle."""

    def open(self) -> None: ...

    def close(self) -> None: ...

    def new_page(self) -> Any: ...

    def pages(self) -> list[Any]: ...

    def cookies(self, urls: Sequence[str] | None = None) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class LaunchPlan:
    engine: str
    headless: bool
    navigation_timeout_ms: int
    action_timeout_ms: int
    locale: str
    viewport: tuple[int, int]
    storage_state: StorageState = None

    @classmethod
    def from_config(
        cls,
        browser: BrowserConfig,
        *,
        headless: bool | None = None,
        storage_state: str | Path | dict[str, Any] | None = None,
    ) -> LaunchPlan:
        return cls(
            engine=browser.engine,
            headless=browser.headless if headless is None else headless,
            navigation_timeout_ms=browser.navigation_timeout_ms,
            action_timeout_ms=browser.action_timeout_ms,
            locale=browser.locale,
            viewport=(browser.viewport_width, browser.viewport_height),
            storage_state=str(storage_state) if isinstance(storage_state, Path) else storage_state,
        )

    def context_kwargs(self) -> dict[str, Any]:
        width, height = self.viewport
        kwargs: dict[str, Any] = {"locale": self.locale, "viewport": {"width": width, "height": height}}
        if self.storage_state is not None:
            kwargs["storage_state"] = self.storage_state
        return kwargs


class PlaywrightBrowserSession:
    """One browser and one context, released newest-first on close.

    The sync Playwright API is bound to the thread that started it, so a
    session must be opened, used, and closed on one thread.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        headless: bool | None = None,
        storage_state: str | Path | dict[str, Any] | None = None,
        playwright_factory: PlaywrightFactory | None = None,
    ) -> None:
        self.plan = LaunchPlan.from_config(config.browser, headless=headless, storage_state=storage_state)
        self._factory = playwright_factory or _default_playwright_factory
        self._context: Any | None = None
        # (label, release callable) in acquisition order
        self._releases: list[tuple[str, Callable[[], Any]]] = []

    @property
    def is_open(self) -> bool:
        return self._context is not None

    def open(self) -> None:
        if self.is_open:
            return
        try:
            self._launch()
        except Exception as exc:
            self._release_all()
            if isinstance(exc, BrowserError):
                raise
            raise BrowserError(f"Could not start the browser: {exc}") from exc

    def new_page(self) -> Any:
        if not self.is_open:
            self.open()
        try:
            page = self._active_context().new_page()
        except Exception as exc:
            raise BrowserError(f"Could not open a new tab: {exc}") from exc
        configure = getattr(page, "set_default_navigation_timeout", None)
        if callable(configure):
            configure(self.plan.navigation_timeout_ms)
        return page

    def pages(self) -> list[Any]:
        return list(self._context.pages) if self._context is not None else []

    def cookies(self, urls: Sequence[str] | None = None) -> list[dict[str, Any]]:
        context = self._active_context()
        args = [list(urls)] if urls else []
        try:
            return list(context.cookies(*args))
        except Exception as exc:
            raise BrowserError(f"Could not read cookies from the browser context: {exc}") from exc

    def storage_state(self) -> dict[str, Any]:
        try:
            state = self._active_context().storage_state()
        except BrowserError:
            raise
        except Exception as exc:
            raise BrowserError(f"Could not export the browser storage_state: {exc}") from exc
        if not isinstance(state, dict):
            raise BrowserError("Browser returned a storage_state that is not a JSON object.")
        return state

    def close(self) -> None:
        failures = self._release_all()
        if failures:
            raise BrowserError("Browser shutdown was incomplete: " + "; ".join(failures))

    def __enter__(self) -> PlaywrightBrowserSession:
        self.open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        try:
            self.close()
        except BrowserError:
            # the body's own exception takes precedence over shutdown noise
            if exc_type is None:
                raise
        return False

    def _launch(self) -> None:
        manager = self._factory()
        driver = manager.__enter__()
        self._releases.append(("playwright", lambda: manager.__exit__(None, None, None)))

        launcher = getattr(driver, self.plan.engine, None)
        if launcher is None:
            raise BrowserError(f"Unsupported browser engine '{self.plan.engine}'.")
        browser = launcher.launch(headless=self.plan.headless)
        self._releases.append(("browser", browser.close))

        context = browser.new_context(**self.plan.context_kwargs())
        self._releases.append(("context", context.close))
        context.set_default_timeout(self.plan.action_timeout_ms)
        self._context = context

    def _active_context(self) -> Any:
        if self._context is None:
            raise BrowserError("Browser session is not open.")
        return self._context

    def _release_all(self) -> list[str]:
        self._context = None
        failures: list[str] = []
        while self._releases:
            label, release = self._releases.pop()
            try:
                release()
            except Exception as exc:
                failures.append(f"{label}: {exc}")
        return failures


def _default_playwright_factory() -> AbstractContextManager[Any]:
    try:
        from playwright.sync_api import sync_playwright
    except ModuleNotFoundError as exc:
        raise BrowserError(
            "Playwright is not installed. Install groupcast with its dependencies, "
            "then run `playwright install chromium`."
        ) from exc
    return sync_playwright()
