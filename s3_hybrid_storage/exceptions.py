"""
Custom exceptions for hybrid storage.

Backends raise these so the engine can decide, per policy, whether a
failure is swallowed into a result, retried, or surfaced to the caller.
"""

from __future__ import annotations


class HybridStorageError(Exception):
    """Base exception for all hybrid storage errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(HybridStorageError):
    """Raised when storage configuration is missing or invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid configuration for {field}: {reason}",
            {"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason


class InvalidKeyError(HybridStorageError):
    """Raised when a storage key cannot be normalized."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Invalid storage key {key!r}: {reason}", {"key": key, "reason": reason})
        self.key = key
        self.reason = reason


class BackendUnavailableError(HybridStorageError):
    """Raised when a backend client is not configured or could not be built."""

    def __init__(self, backend: str, reason: str | None = None, cause: Exception | None = None):
        details = {"backend": backend}
        if reason:
            details["reason"] = reason
        if cause:
            details["cause"] = str(cause)
        message = f"Storage backend unavailable: {backend}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, details)
        self.backend = backend
        self.reason = reason
        self.cause = cause


class RemoteStorageError(HybridStorageError):
    """Base class for failures reported by the object store."""

    retryable = False

    def __init__(
        self,
        operation: str,
        key: str | None = None,
        cause: Exception | None = None,
        status_code: int | None = None,
    ):
        details: dict = {"operation": operation}
        if key is not None:
            details["key"] = key
        if cause is not None:
            details["cause"] = str(cause)
        if status_code is not None:
            details["status_code"] = status_code
        message = f"Object store error during {operation}"
        if key is not None:
            message += f": {key}"
        if cause is not None:
            message += f" ({cause})"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause
        self.status_code = status_code

    @property
    def kind(self) -> str:
        """Short error kind used in diagnostics."""
        return type(self).__name__


class TransientRemoteError(RemoteStorageError):
    """Network, timeout or 5xx failure. Safe to retry."""

    retryable = True


class PermanentRemoteError(RemoteStorageError):
    """4xx failure (forbidden, bad request, ...). Not retryable."""


class KeyNotFoundError(PermanentRemoteError):
    """Raised when a key is absent on the attempted backend."""

    def __init__(self, key: str, operation: str = "head", cause: Exception | None = None):
        super().__init__(operation, key, cause, status_code=404)


class LocalIOError(HybridStorageError):
    """Raised when a local filesystem operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Local storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class RemoteDiagnosticError(HybridStorageError):
    """Raised when a configured object store cannot serve a download.

    Unlike writes and deletes, downloads do not silently degrade to local
    storage when the remote is configured but failing: the caller gets the
    error kind and reason so the misconfiguration is visible.
    """

    def __init__(self, key: str, kind: str, reason: str, cause: Exception | None = None):
        super().__init__(
            f"Unable to serve {key} from object storage. Reason ({kind}): {reason}",
            {"key": key, "kind": kind, "reason": reason},
        )
        self.key = key
        self.kind = kind
        self.reason = reason
        self.cause = cause
