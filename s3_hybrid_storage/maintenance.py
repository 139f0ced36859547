"""
One maintenance pass over a storage context.

Runs, in order: optional sync of the local tree to the object store,
optional cleanup of remote objects that no longer belong to any record, and
a health check. Scheduling the pass is left to the caller (cron, a task
queue, ...).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .factory import StorageContext
from .health import HealthReport

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceOptions:
    """Which steps a maintenance pass runs.

    Attributes:
        sync: Upload the local tree to the object store
        delete_local_after_sync: Remove local files once uploaded
        remote_prefix: Key prefix for synced files
        cleanup_orphans: Delete remote objects missing from ``valid_keys``
        cleanup_prefix: Scope of the orphan cleanup (empty = whole bucket)
        health_check: Probe the connection and gather stats
    """

    sync: bool = False
    delete_local_after_sync: bool = False
    remote_prefix: str = ""
    cleanup_orphans: bool = False
    cleanup_prefix: str = ""
    health_check: bool = True


@dataclass
class MaintenanceReport:
    synced: int = 0
    cleaned: int = 0
    errors: list[str] = field(default_factory=list)
    health: HealthReport | None = None

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "cleaned": self.cleaned,
            "errors": list(self.errors),
            "health": self.health.to_dict() if self.health else None,
        }


async def run_maintenance(
    context: StorageContext,
    *,
    local_root: Path | None = None,
    valid_keys: Iterable[str] | None = None,
    options: MaintenanceOptions | None = None,
) -> MaintenanceReport:
    """Run one maintenance pass.

    Args:
        context: Storage context to maintain
        local_root: Tree to sync (default: the context's local root)
        valid_keys: Keys that must be kept; required for orphan cleanup
        options: Steps to run (default: health check only)

    Returns:
        MaintenanceReport aggregating every step
    """
    options = options or MaintenanceOptions()
    report = MaintenanceReport()
    label = context.config.context_id or str(context.config.local_root)
    logger.info(f"Storage maintenance started for {label}")

    if options.sync:
        sync = await context.reconciler.sync_to_remote(
            Path(local_root or context.config.local_root),
            options.remote_prefix,
            delete_local_after=options.delete_local_after_sync,
        )
        report.synced = sync.success_count
        report.errors.extend(sync.errors)
        if sync.success_count:
            logger.info(f"{label}: synced {sync.success_count} files")

    if options.cleanup_orphans:
        if valid_keys is None:
            report.errors.append("Orphan cleanup requested without a list of valid keys")
        else:
            cleanup = await context.reconciler.cleanup_orphans(valid_keys, options.cleanup_prefix)
            report.cleaned = cleanup.deleted_count
            report.errors.extend(cleanup.errors)
            if cleanup.deleted_count:
                logger.info(f"{label}: cleaned {cleanup.deleted_count} orphaned files")

    if options.health_check:
        report.health = await context.health.check()
        if not report.health.connection.ok:
            report.errors.append(f"{label}: storage connection failed")

    if report.errors:
        logger.error(f"Storage maintenance for {label} completed with {len(report.errors)} errors")
        for error in report.errors:
            logger.error(error)
    else:
        logger.info(f"Storage maintenance for {label} completed successfully")
    return report
