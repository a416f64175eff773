"""Error taxonomy for stable module boundaries."""


class GroupcastError(Exception):
    """Base exception for groupcast."""


class ConfigError(GroupcastError):
    """Raised when configuration is invalid or missing."""


class AuthError(GroupcastError):
    """Raised for authentication and storage-state lifecycle failures."""


class BrowserError(GroupcastError):
    """Raised for browser/session management failures."""


class CollectError(GroupcastError):
    """Raised for collection run lifecycle failures."""


class HandoffError(GroupcastError):
    """Raised for mailbox storage and result polling failures."""


class DispatchError(GroupcastError):
    """Raised when a dispatch run is misconfigured or driven out of order."""


class BulkImportError(GroupcastError):
    """Raised when bulk import input yields no usable group ids."""


class DiagnosticsError(GroupcastError):
    """Raised for event log and redaction failures."""
