"""Browser contracts."""

from .policy import detect_login_wall, detect_page_login_wall
from .session import BrowserSessionManager, LaunchPlan, PlaywrightBrowserSession

__all__ = [
    "BrowserSessionManager",
    "LaunchPlan",
    "PlaywrightBrowserSession",
    "detect_login_wall",
    "detect_page_login_wall",
]
