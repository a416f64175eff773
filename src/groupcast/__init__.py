"""groupcast package scaffold."""

from .config import (
    AppConfig,
    BrowserConfig,
    CollectorConfig,
    CoordinatorConfig,
    DispatchConfig,
    GraphConfig,
    HandoffConfig,
    PlatformConfig,
    RuntimeConfig,
    config_to_dict,
    default_config,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
)
from .models import (
    CandidateEntity,
    DiscoverySource,
    DispatchOutcome,
    DispatchTarget,
    HandoffPayload,
    PostPayload,
    PublishResult,
)

__all__ = [
    "AppConfig",
    "BrowserConfig",
    "CandidateEntity",
    "CollectorConfig",
    "CoordinatorConfig",
    "DiscoverySource",
    "DispatchConfig",
    "DispatchOutcome",
    "DispatchTarget",
    "GraphConfig",
    "HandoffConfig",
    "HandoffPayload",
    "PlatformConfig",
    "PostPayload",
    "PublishResult",
    "RuntimeConfig",
    "config_to_dict",
    "default_config",
    "init_default_config",
    "load_runtime_config",
    "resolve_config_path",
]

__version__ = "0.1.0"
