"""Runtime configuration: TOML file location, defaults, and validated loading."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from pathlib import Path
import tomllib
from typing import Any

from platformdirs import user_config_dir

from .errors import ConfigError

VALID_BROWSER_ENGINES = {"chromium", "firefox", "webkit"}
DEFAULT_CONFIG_FILENAME = "config.toml"
CONFIG_ENV_VAR = "GROUPCAST_CONFIG"

DEFAULT_INTERCEPT_MARKERS = ("/api/graphql", "graphql", "groups")
DEFAULT_RESERVED_SLUGS = (
    "joins",
    "feed",
    "discover",
    "create",
    "search",
    "notifications",
    "your_groups",
)
DEFAULT_BANNED_NAME_TERMS = ("member", "membro", "miembro", "post")

DEFAULT_CONFIG_TEMPLATE = """[app]
default_profile = "default"
debug = false

[browser]
engine = "chromium"
headless = false
navigation_timeout_ms = 30000
action_timeout_ms = 10000
viewport_width = 1280
viewport_height = 900
locale = "en-US"

[platform]
origin = "https://www.facebook.com"
groups_url = "https://www.facebook.com/groups/joins/"
intercept_url_markers = ["/api/graphql", "graphql", "groups"]
reserved_slugs = ["joins", "feed", "discover", "create", "search", "notifications", "your_groups"]
banned_name_terms = ["member", "membro", "miembro", "post"]

[collector]
scroll_wait_seconds = 1.5
scroll_jitter_seconds = 0.5
idle_ticks = 8
max_runtime_seconds = 150
json_max_depth = 20

[handoff]
channel = "groups"
poll_interval_seconds = 2.0
max_polls = 90

[coordinator]
load_timeout_ms = 30000
attach_attempts = 10
attach_interval_seconds = 2.0

[dispatch]
delay_seconds = 3.0

[graph]
api_base = "https://graph.facebook.com/v18.0"
access_token_env = "GROUPCAST_ACCESS_TOKEN"
timeout_seconds = 30.0
"""


@dataclass(frozen=True)
class AppConfig:
    default_profile: str = "default"
    debug: bool = False


@dataclass(frozen=True)
class BrowserConfig:
    engine: str = "chromium"
    headless: bool = False
    navigation_timeout_ms: int = 30_000
    action_timeout_ms: int = 10_000
    viewport_width: int = 1280
    viewport_height: int = 900
    locale: str = "en-US"


@dataclass(frozen=True)
class PlatformConfig:
    origin: str = "https://www.facebook.com"
    groups_url: str = "https://www.facebook.com/groups/joins/"
    intercept_url_markers: tuple[str, ...] = DEFAULT_INTERCEPT_MARKERS
    reserved_slugs: tuple[str, ...] = DEFAULT_RESERVED_SLUGS
    banned_name_terms: tuple[str, ...] = DEFAULT_BANNED_NAME_TERMS


@dataclass(frozen=True)
class CollectorConfig:
    scroll_wait_seconds: float = 1.5
    scroll_jitter_seconds: float = 0.5
    idle_ticks: int = 8
    max_runtime_seconds: int = 150
    json_max_depth: int = 20


@dataclass(frozen=True)
class HandoffConfig:
    channel: str = "groups"
    poll_interval_seconds: float = 2.0
    max_polls: int = 90

    @property
    def window_seconds(self) -> float:
        """How long a consumer waits for a collection before giving up."""
        return self.max_polls * self.poll_interval_seconds


@dataclass(frozen=True)
class CoordinatorConfig:
    load_timeout_ms: int = 30_000
    attach_attempts: int = 10
    attach_interval_seconds: float = 2.0


@dataclass(frozen=True)
class DispatchConfig:
    delay_seconds: float = 3.0


@dataclass(frozen=True)
class GraphConfig:
    api_base: str = "https://graph.facebook.com/v18.0"
    access_token_env: str = "GROUPCAST_ACCESS_TOKEN"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class RuntimeConfig:
    app: AppConfig = field(default_factory=AppConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    handoff: HandoffConfig = field(default_factory=HandoffConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)


def default_config() -> RuntimeConfig:
    return RuntimeConfig()


def default_config_toml() -> str:
    return DEFAULT_CONFIG_TEMPLATE


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Explicit path wins, then ``$GROUPCAST_CONFIG``, then the platform config dir."""
    chosen = config_path or os.getenv(CONFIG_ENV_VAR)
    if chosen:
        return Path(chosen).expanduser()
    return Path(user_config_dir("groupcast", appauthor=False)) / DEFAULT_CONFIG_FILENAME


def state_dir(config_path: str | Path | None = None) -> Path:
    """Return the directory holding profiles, the mailbox database, and event logs."""
    return resolve_config_path(config_path).parent


def init_default_config(config_path: str | Path | None = None, force: bool = False) -> Path:
    path = resolve_config_path(config_path)
    if path.is_dir():
        raise ConfigError(f"'{path}' is a directory; point --path at a file such as '{path / DEFAULT_CONFIG_FILENAME}'.")
    if path.exists() and not force:
        raise ConfigError(f"A config file already exists at '{path}'; pass --force to replace it.")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(default_config_toml(), encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot write config to '{path}': {exc}. Pick another location with --path.") from exc
    return path


def load_runtime_config(config_path: str | Path | None = None) -> RuntimeConfig:
    path = resolve_config_path(config_path)
    if not path.exists():
        raise ConfigError(f"No config at '{path}'. Run `groupcast config init --path \"{path}\"` to create one.")
    if path.is_dir():
        raise ConfigError(f"'{path}' is a directory, not a {DEFAULT_CONFIG_FILENAME} file.")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config '{path}': {exc}") from exc
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"'{path}' is invalid TOML ({exc}); fix it or regenerate with `groupcast config init --force`."
        ) from exc
    return _build_runtime_config(data)


def config_to_dict(config: RuntimeConfig) -> dict[str, Any]:
    return asdict(config)


class _Section:
    """Typed reads from one TOML table; absent keys fall back to the dataclass default."""

    def __init__(self, data: dict[str, Any], name: str, defaults: Any) -> None:
        raw = data.get(name, {})
        if not isinstance(raw, dict):
            raise ConfigError(f"[{name}] must be a table, got {type(raw).__name__}.")
        self._raw = raw
        self._name = name
        self._defaults = defaults

    def _get(self, key: str) -> tuple[str, Any]:
        return f"{self._name}.{key}", self._raw.get(key, getattr(self._defaults, key))

    def text(self, key: str) -> str:
        label, value = self._get(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"'{label}' must be a non-empty string.")
        return value

    def choice(self, key: str, allowed: set[str]) -> str:
        label, value = self._get(key)
        if value not in allowed:
            raise ConfigError(f"'{label}' must be one of: {', '.join(sorted(allowed))}.")
        return value

    def flag(self, key: str) -> bool:
        label, value = self._get(key)
        if not isinstance(value, bool):
            raise ConfigError(f"'{label}' must be true or false.")
        return value

    def count(self, key: str) -> int:
        label, value = self._get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError(f"'{label}' must be a positive integer.")
        return value

    def seconds(self, key: str, *, allow_zero: bool = False) -> float:
        label, value = self._get(key)
        valid = not isinstance(value, bool) and isinstance(value, int | float)
        if not valid or value < 0 or (value == 0 and not allow_zero):
            bound = "zero or more" if allow_zero else "greater than zero"
            raise ConfigError(f"'{label}' must be a number {bound}.")
        return float(value)

    def words(self, key: str) -> tuple[str, ...]:
        label, value = self._get(key)
        if not isinstance(value, list | tuple) or not all(isinstance(v, str) and v.strip() for v in value):
            raise ConfigError(f"'{label}' must be an array of non-empty strings.")
        return tuple(v.strip() for v in value)


def _build_runtime_config(data: dict[str, Any]) -> RuntimeConfig:
    app = _Section(data, "app", AppConfig())
    browser = _Section(data, "browser", BrowserConfig())
    platform = _Section(data, "platform", PlatformConfig())
    collector = _Section(data, "collector", CollectorConfig())
    handoff = _Section(data, "handoff", HandoffConfig())
    coordinator = _Section(data, "coordinator", CoordinatorConfig())
    dispatch = _Section(data, "dispatch", DispatchConfig())
    graph = _Section(data, "graph", GraphConfig())

    config = RuntimeConfig(
        app=AppConfig(default_profile=app.text("default_profile"), debug=app.flag("debug")),
        browser=BrowserConfig(
            engine=browser.choice("engine", VALID_BROWSER_ENGINES),
            headless=browser.flag("headless"),
            navigation_timeout_ms=browser.count("navigation_timeout_ms"),
            action_timeout_ms=browser.count("action_timeout_ms"),
            viewport_width=browser.count("viewport_width"),
            viewport_height=browser.count("viewport_height"),
            locale=browser.text("locale"),
        ),
        platform=PlatformConfig(
            origin=platform.text("origin"),
            groups_url=platform.text("groups_url"),
            intercept_url_markers=platform.words("intercept_url_markers"),
            reserved_slugs=platform.words("reserved_slugs"),
            banned_name_terms=platform.words("banned_name_terms"),
        ),
        collector=CollectorConfig(
            scroll_wait_seconds=collector.seconds("scroll_wait_seconds", allow_zero=True),
            scroll_jitter_seconds=collector.seconds("scroll_jitter_seconds", allow_zero=True),
            idle_ticks=collector.count("idle_ticks"),
            max_runtime_seconds=collector.count("max_runtime_seconds"),
            json_max_depth=collector.count("json_max_depth"),
        ),
        handoff=HandoffConfig(
            channel=handoff.text("channel"),
            poll_interval_seconds=handoff.seconds("poll_interval_seconds"),
            max_polls=handoff.count("max_polls"),
        ),
        coordinator=CoordinatorConfig(
            load_timeout_ms=coordinator.count("load_timeout_ms"),
            attach_attempts=coordinator.count("attach_attempts"),
            attach_interval_seconds=coordinator.seconds("attach_interval_seconds", allow_zero=True),
        ),
        dispatch=DispatchConfig(delay_seconds=dispatch.seconds("delay_seconds")),
        graph=GraphConfig(
            api_base=graph.text("api_base"),
            access_token_env=graph.text("access_token_env"),
            timeout_seconds=graph.seconds("timeout_seconds"),
        ),
    )
    check_collection_fits_handoff(config)
    return config


def check_collection_fits_handoff(config: RuntimeConfig) -> None:
    """Reject a collector deadline that would outlast the consumer's poll window."""
    window = config.handoff.window_seconds
    if config.collector.max_runtime_seconds >= window:
        raise ConfigError(
            f"'collector.max_runtime_seconds' ({config.collector.max_runtime_seconds}) must be shorter than the "
            f"handoff window (handoff.max_polls x handoff.poll_interval_seconds = {window:g}s)."
        )
