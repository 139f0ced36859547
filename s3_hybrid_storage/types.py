"""
Result types for hybrid storage operations.

All of these are created per call and owned by the caller; none of them
are cached or persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class BackendOutcome(Enum):
    """Outcome of an operation on one backend."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Backend not attempted (unconfigured or not allowed by policy)


@dataclass
class OperationResult:
    """Outcome of a single-file operation across both backends.

    Truthiness follows ``succeeded`` so callers that only need a boolean
    can write ``if await engine.upload(...)``.
    """

    key: str
    remote: BackendOutcome = BackendOutcome.SKIPPED
    local: BackendOutcome = BackendOutcome.SKIPPED
    local_permitted: bool = False

    @property
    def succeeded(self) -> bool:
        return self.remote == BackendOutcome.SUCCEEDED or (
            self.local_permitted and self.local == BackendOutcome.SUCCEEDED
        )

    def __bool__(self) -> bool:
        return self.succeeded


@dataclass
class SyncReport:
    """Aggregate result of a bulk sync.

    Workers share one report; each mutation completes without awaiting, so
    concurrent tasks on the event loop never interleave inside it.
    """

    success_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.failed_count == 0 and not self.errors

    def record_success(self) -> None:
        self.success_count += 1

    def record_failure(self, message: str) -> None:
        self.failed_count += 1
        self.errors.append(message)

    def record_error(self, message: str) -> None:
        """Record an error that is not tied to a single item."""
        self.errors.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success_count,
            "failed": self.failed_count,
            "errors": list(self.errors),
            "cancelled": self.cancelled,
        }


@dataclass
class CleanupReport:
    """Result of an orphan cleanup scan."""

    deleted_count: int = 0
    scanned_count: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted": self.deleted_count,
            "scanned": self.scanned_count,
            "errors": list(self.errors),
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True)
class PresignedAccess:
    """Time-limited direct access URL for a remote object."""

    url: str
    expires_at: datetime


@dataclass(frozen=True)
class DownloadTarget:
    """Where a caller should fetch a file from.

    Exactly one of ``access`` (redirect to the object store) or
    ``local_path`` (serve from the local backend) is set.
    """

    access: PresignedAccess | None = None
    local_path: Path | None = None

    @property
    def is_redirect(self) -> bool:
        return self.access is not None


@dataclass(frozen=True)
class ConnectionCheck:
    """Result of a connectivity check."""

    ok: bool
    diagnostic: str | None = None


@dataclass
class StorageStats:
    """Object counts and byte totals per backend."""

    remote_count: int = 0
    remote_size: int = 0
    local_count: int = 0
    local_size: int = 0
    provider: str | None = None
    hybrid_mode: bool = False
    fallback_enabled: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cloud": {"count": self.remote_count, "size": self.remote_size},
            "local": {"count": self.local_count, "size": self.local_size},
            "provider": self.provider,
            "hybrid_mode": self.hybrid_mode,
            "fallback_enabled": self.fallback_enabled,
            "error": self.error,
        }
