# sync_platform/errors.py
# Error taxonomy used across the sync engine.
from __future__ import annotations


class SyncError(RuntimeError): ...


class ConfigError(SyncError): ...


class SIMKLError(SyncError):
    def __init__(self, message: str, *, status: int | None = None, endpoint: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.endpoint = endpoint


class InvalidTokenError(SIMKLError):
    """The remote rejected the user token. Never retried; the token gets invalidated."""


class TransientError(SIMKLError):
    """Timeout, network failure, 429/5xx or an unreadable body. The next scheduled run retries."""


class NoMatchError(SyncError):
    """A file search gave nothing usable for the item (null body or wrong media type)."""
