"""
Error taxonomy for cortexsync.

- NotFoundError: the remote object does not exist (expected, non-fatal).
- TranslationError: the desired spec cannot be turned into the remote shape.
- RemoteCallError: any other failure talking to Cortex.
- TypeMismatchError: a managed object was routed to the wrong controller.
- ConfigError: configuration / provider config cannot be resolved.
"""

from __future__ import annotations

from typing import Optional


class CortexSyncError(Exception):
    """Base class for all cortexsync errors."""


class NotFoundError(CortexSyncError):
    """Raised (or returned) when the requested remote resource does not exist."""


class TranslationError(CortexSyncError):
    """Raised when a desired spec is malformed (bad duration, record/alert misuse, bad scalar)."""


class TypeMismatchError(CortexSyncError):
    """Raised when a managed object does not match the kind its controller handles."""


class ConfigError(CortexSyncError):
    """Raised when runtime configuration cannot be resolved."""


class RemoteCallError(CortexSyncError):
    """Failure of a fetch/put/delete call against the remote API."""

    def __init__(self, operation: str, detail: str, status: Optional[int] = None) -> None:
        self.operation = operation
        self.detail = detail
        self.status = status
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"{self.operation} failed"
        if self.status:
            base += f" (status={self.status})"
        return f"{base}: {self.detail}"
