from __future__ import annotations


class PortalExportError(RuntimeError):
    """Base class for every error raised by portal-export."""


class FatalRunError(PortalExportError):
    """Raised when the whole run has to stop."""


class ConfigurationError(FatalRunError):
    """Raised when the runtime configuration cannot be used."""


class ExecutableNotFound(ConfigurationError):
    """Raised when the browser executable does not exist."""


class NoFreePort(FatalRunError):
    """Raised when no local port could be bound for the debugging endpoint."""


class ControlHandshakeFailed(FatalRunError):
    """Raised when the browser never exposed a usable control endpoint."""


class SessionError(FatalRunError):
    """Raised when the portal session cookies never showed up."""


class ItemError(PortalExportError):
    """Raised when a single shortcut item cannot be exported."""

    def __init__(self, message: str, *, phase: str):
        super().__init__(message)
        self.phase = phase


class UIElementNotFound(ItemError):
    """Raised when a portal control could not be located on the page."""


class NavigationTimeout(ItemError):
    """Raised when a portal page did not finish loading in time."""


class DownloadTimeout(ItemError):
    """Raised when an export never produced a stable file."""


class FileSystemError(ItemError):
    """Raised when a downloaded file cannot be inspected or renamed."""
