"""Sync error taxonomy."""

from typing import Optional


class SyncError(Exception):
    """Base class for errors surfaced by the sync engine."""
    code = "sync_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return "Sync error"


class NotAuthenticatedError(SyncError):
    """No valid session."""
    code = "not_authenticated"

    def default_message(self) -> str:
        return "Not signed in"


class OfflineError(SyncError):
    """Connectivity gate failed."""
    code = "network_error"

    def default_message(self) -> str:
        return "No network connection"


class SyncFailedError(SyncError):
    """Generic pass failure; the message carries the underlying reason."""
    code = "sync_failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class DownloadFailedError(SyncError):
    """Download phase failure."""
    code = "download_failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Download failed: {reason}")


class ConflictError(SyncError):
    """Reserved for conflicting concurrent edits; not raised by the engine yet."""
    code = "conflict"

    def default_message(self) -> str:
        return "Data conflict"
