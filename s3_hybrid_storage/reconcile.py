"""
Bulk reconciliation between the local tree and the object store.

Each bulk operation streams its work items (a depth-first walk of the local
tree, or the paginated remote listing) into a bounded queue consumed by a
fixed pool of worker tasks. Neither side is materialized in memory, and a
failure on one item is recorded in the report without aborting the run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any, TypeVar

import aiofiles.os

from .config import DEFAULT_MAX_CONCURRENCY
from .engine import HybridStorageEngine
from .exceptions import ConfigurationError, InvalidKeyError, LocalIOError, RemoteStorageError
from .keys import is_directory_marker, join_key, normalize_prefix, relative_key
from .local import LocalStore
from .local import file_ops
from .types import CleanupReport, SyncReport

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLOUD_UNAVAILABLE = "Cloud storage not available"


def _is_set(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _listing_error(error: RemoteStorageError) -> str:
    reason = error.cause if error.cause is not None else error.message
    return f"Listing failed: {error.kind}: {reason}"


class ReconciliationEngine:
    """Bulk sync, restore and orphan cleanup on top of a HybridStorageEngine.

    Args:
        engine: Engine used for every per-item operation
        max_concurrency: Number of worker tasks per bulk operation
    """

    def __init__(self, engine: HybridStorageEngine, *, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        if max_concurrency < 1:
            raise ConfigurationError("max_concurrency", "must be at least 1")
        self.engine = engine
        self.max_concurrency = max_concurrency
        self.log = engine.log.bind(logger, component="reconcile")

    async def _run_pool(
        self,
        items: AsyncIterator[T],
        handle: Callable[[T], Awaitable[None]],
        on_error: Callable[[T, Exception], None],
        cancel_event: asyncio.Event | None,
    ) -> bool:
        """Feed ``items`` to the worker pool until exhausted or cancelled.

        Items already queued when a listing error or cancellation happens are
        drained before this returns. Errors raised by ``items`` propagate.

        Returns:
            True if the run was cancelled
        """
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=self.max_concurrency * 2)

        async def worker() -> None:
            while True:
                item = await queue.get()
                try:
                    if not _is_set(cancel_event):
                        await handle(item)
                except Exception as e:
                    self.log.error(f"Bulk item failed: {item}: {e}")
                    on_error(item, e)
                finally:
                    queue.task_done()

        workers = [asyncio.create_task(worker()) for _ in range(self.max_concurrency)]
        try:
            try:
                async for item in items:
                    if _is_set(cancel_event):
                        break
                    await queue.put(item)
            finally:
                await queue.join()
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        return _is_set(cancel_event)

    # =========================================================================
    # Local -> remote
    # =========================================================================

    async def sync_to_remote(
        self,
        local_root: Path,
        remote_prefix: str = "",
        delete_local_after: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncReport:
        """Upload every file below ``local_root`` to the object store.

        Keys are ``remote_prefix`` joined with the file's path relative to
        ``local_root``. Re-running uploads the same keys again, so the
        operation is idempotent per file.

        Args:
            local_root: Directory to upload
            remote_prefix: Key prefix for uploaded files
            delete_local_after: Remove each local file once its upload succeeded
            cancel_event: Set to stop the run between items

        Returns:
            SyncReport with per-file successes and failures
        """
        report = SyncReport()
        if not self.engine.remote_available:
            report.record_error(CLOUD_UNAVAILABLE)
            return report

        root = Path(local_root)
        if not await aiofiles.os.path.isdir(root):
            report.record_error(f"Local directory not found: {root}")
            return report

        prefix = normalize_prefix(remote_prefix)
        self.log.info(f"Syncing {root} to object storage (prefix={prefix!r})")

        def relative(path: Path) -> str:
            return path.relative_to(root).as_posix()

        async def upload(path: Path) -> None:
            rel = relative(path)
            if not await self.engine.upload_to_remote(path, join_key(prefix, rel)):
                report.record_failure(f"Failed to sync: {rel}")
                return
            report.record_success()
            self.log.debug(f"Synced {rel}")
            if delete_local_after:
                try:
                    await file_ops.remove_file(path)
                except LocalIOError as e:
                    report.record_error(f"Failed to remove local file: {rel}")
                    self.log.warning(f"Uploaded {rel} but could not remove it locally: {e.message}")

        def failed(path: Path, error: Exception) -> None:
            report.record_failure(f"Failed to sync: {relative(path)}")

        try:
            report.cancelled = await self._run_pool(
                self.engine.local.iter_tree(root), upload, failed, cancel_event
            )
        except LocalIOError as e:
            report.record_error(f"Failed to walk local directory: {e.message}")

        self.log.info(
            f"Sync to object storage finished: {report.success_count} uploaded, "
            f"{report.failed_count} failed"
        )
        return report

    async def offload_file(
        self,
        local_path: Path,
        key: str,
        delete_local: bool = False,
        stop_at: Path | None = None,
    ) -> bool:
        """Upload one file and optionally move it off local disk.

        The local copy is only removed after the object is confirmed to exist
        remotely. Parent directories left empty are pruned up to ``stop_at``
        (default: the local store root).

        Returns:
            True if the upload succeeded
        """
        path = Path(local_path)
        if not await self.engine.upload_to_remote(path, key):
            self.log.error(f"Failed to offload {path} to {key}")
            return False

        if delete_local:
            if not await self.engine.exists_in_remote(key):
                self.log.warning(f"Upload of {key} not confirmed remotely, keeping local copy {path}")
                return True
            try:
                await file_ops.remove_file(path)
            except LocalIOError as e:
                self.log.warning(f"Could not remove offloaded file {path}: {e.message}")
                return True
            stop = Path(stop_at or self.engine.local.root)
            pruned = await file_ops.prune_empty_directories(path.parent, stop)
            if pruned:
                self.log.debug(f"Pruned {pruned} empty directories above {path}")

        return True

    # =========================================================================
    # Remote -> local
    # =========================================================================

    async def sync_from_remote(
        self,
        local_root: Path,
        remote_prefix: str = "",
        cancel_event: asyncio.Event | None = None,
    ) -> SyncReport:
        """Download every object under ``remote_prefix`` into ``local_root``.

        Directory markers are skipped. Keys whose relative path would land
        outside ``local_root`` are rejected and counted as failures.
        """
        report = SyncReport()
        if not self.engine.remote_available:
            report.record_error(CLOUD_UNAVAILABLE)
            return report

        prefix = normalize_prefix(remote_prefix)
        target = LocalStore(Path(local_root))
        self.log.info(f"Restoring object storage prefix {prefix!r} into {target.root}")

        async def keys() -> AsyncIterator[str]:
            async for info in self.engine.iter_remote(prefix):
                if not is_directory_marker(info.key):
                    yield info.key

        async def download(key: str) -> None:
            try:
                dest = target.path_for(relative_key(key, prefix))
            except InvalidKeyError:
                report.record_failure(f"Rejected key outside local root: {key}")
                return
            try:
                await file_ops.ensure_directory(dest.parent)
            except LocalIOError:
                report.record_failure(f"Failed to create directory: {dest.parent}")
                return
            if await self.engine.download_from_remote(key, dest):
                report.record_success()
                self.log.debug(f"Restored {key}")
            else:
                report.record_failure(f"Failed to download: {key}")

        def failed(key: str, error: Exception) -> None:
            report.record_failure(f"Failed to download: {key}")

        try:
            report.cancelled = await self._run_pool(keys(), download, failed, cancel_event)
        except RemoteStorageError as e:
            report.record_error(_listing_error(e))
            self.log.error(f"Restore listing failed for prefix {prefix!r}: {e.message}")

        self.log.info(
            f"Sync from object storage finished: {report.success_count} downloaded, "
            f"{report.failed_count} failed"
        )
        return report

    # =========================================================================
    # Orphans
    # =========================================================================

    async def cleanup_orphans(
        self,
        valid_keys: Iterable[str],
        prefix: str = "",
        cancel_event: asyncio.Event | None = None,
    ) -> CleanupReport:
        """Delete remote objects under ``prefix`` that are not in ``valid_keys``.

        Objects are deleted as listing pages are consumed. A failed delete is
        recorded and the scan continues.

        Example:
            >>> report = await reconciler.cleanup_orphans({"a/b"}, "a/")
            >>> report.deleted_count  # a/c and a/d removed
            2
        """
        report = CleanupReport()
        if not self.engine.remote_available:
            report.errors.append(CLOUD_UNAVAILABLE)
            return report

        valid = frozenset(valid_keys)
        prefix = normalize_prefix(prefix)

        async def orphans() -> AsyncIterator[str]:
            async for info in self.engine.iter_remote(prefix):
                report.scanned_count += 1
                if info.key not in valid:
                    yield info.key

        async def delete(key: str) -> None:
            if await self.engine.delete_from_remote(key):
                report.deleted_count += 1
                self.log.debug(f"Deleted orphan {key}")
            else:
                report.errors.append(f"Failed to delete: {key}")

        def failed(key: str, error: Exception) -> None:
            report.errors.append(f"Failed to delete: {key}")

        try:
            report.cancelled = await self._run_pool(orphans(), delete, failed, cancel_event)
        except RemoteStorageError as e:
            report.errors.append(_listing_error(e))
            self.log.error(f"Orphan cleanup listing failed for prefix {prefix!r}: {e.message}")

        self.log.info(
            f"Orphan cleanup finished: scanned {report.scanned_count}, deleted {report.deleted_count}"
        )
        return report
