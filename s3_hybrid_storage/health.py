"""
Storage health checks and statistics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .engine import HybridStorageEngine
from .exceptions import BackendUnavailableError, LocalIOError, RemoteStorageError
from .local import file_ops
from .types import ConnectionCheck, StorageStats

logger = logging.getLogger(__name__)

_UNITS = ((1024**3, "GB"), (1024**2, "MB"), (1024, "KB"))


def format_bytes(size: int) -> str:
    """Human readable size: ``0 bytes``, ``1 byte``, ``512 bytes``, ``1.50 KB``."""
    for threshold, unit in _UNITS:
        if size >= threshold:
            return f"{size / threshold:,.2f} {unit}"
    if size > 1:
        return f"{size} bytes"
    if size == 1:
        return "1 byte"
    return "0 bytes"


@dataclass
class HealthReport:
    """Outcome of one health check of a storage context."""

    connection: ConnectionCheck
    stats: StorageStats | None = None
    hybrid_mode: bool = False

    @property
    def healthy(self) -> bool:
        return self.connection.ok and (self.stats is None or self.stats.error is None)

    @property
    def summary(self) -> str:
        if not self.connection.ok:
            return f"Storage connection failed: {self.connection.diagnostic}"
        if self.stats is None:
            return "Storage connected"
        return f"{self.stats.remote_count} files, {format_bytes(self.stats.remote_size)} used"

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connection.ok,
            "diagnostic": self.connection.diagnostic,
            "summary": self.summary,
            "hybrid_mode": self.hybrid_mode,
            "stats": self.stats.to_dict() if self.stats else None,
        }


class HealthMonitor:
    """Connection check and usage statistics for one engine."""

    def __init__(self, engine: HybridStorageEngine):
        self.engine = engine
        self.log = engine.log.bind(logger, component="health")

    async def test_connection(self) -> ConnectionCheck:
        return await self.engine.test_connection()

    async def get_storage_stats(self) -> StorageStats:
        """Count objects and bytes on each backend.

        The remote listing is exhaustive; for large buckets this is a slow
        call. A listing failure is reported in ``error`` with zero remote
        counts rather than raised.
        """
        engine = self.engine
        stats = StorageStats(
            provider=engine.object_store.provider.value if engine.object_store else None,
            hybrid_mode=engine.policy.hybrid_mode,
            fallback_enabled=engine.policy.fallback_enabled,
        )

        if engine.remote_available:
            count = 0
            total = 0
            try:
                async for info in engine.iter_remote():
                    count += 1
                    total += info.size
            except (RemoteStorageError, BackendUnavailableError) as e:
                self.log.error(f"Failed to get cloud storage stats: {e.message}")
                stats.error = e.message
            else:
                stats.remote_count = count
                stats.remote_size = total

        if engine.policy.local_permitted:
            try:
                async for path in engine.local.iter_tree():
                    size = await file_ops.file_size(path)
                    if size is None:
                        continue
                    stats.local_count += 1
                    stats.local_size += size
            except LocalIOError as e:
                self.log.error(f"Failed to get local storage stats: {e.message}")

        return stats

    async def check(self) -> HealthReport:
        """Probe the connection, then gather stats if it is up."""
        connection = await self.test_connection()
        report = HealthReport(connection=connection, hybrid_mode=self.engine.policy.hybrid_mode)
        if not connection.ok:
            self.log.error(f"Storage connection failed: {connection.diagnostic}")
            return report

        report.stats = await self.get_storage_stats()
        self.log.info(report.summary)
        if report.hybrid_mode:
            self.log.info("Hybrid mode active")
        return report
