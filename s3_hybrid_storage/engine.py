"""
Hybrid storage engine.

Executes single-file operations against a remote object store and a local
filesystem according to a StoragePolicy:

- Cloud-only: the object store is authoritative, local is never touched
- Hybrid: every write/delete is attempted on both backends, independently
- Fallback: local is used only after the remote attempt definitively failed

Backend errors from writes, deletes and lookups are logged and folded into
the returned result. Downloads are the exception: when the object store is
configured but failing, the caller gets a RemoteDiagnosticError instead of a
silent fallback.
"""

from __future__ import annotations

import asyncio
import mimetypes
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from .config import (
    DEFAULT_PRESIGN_TTL,
    DEFAULT_TIMEOUT,
    ObjectStoreConfig,
    StoragePolicy,
    build_public_url,
)
from .exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    InvalidKeyError,
    KeyNotFoundError,
    LocalIOError,
    RemoteDiagnosticError,
    RemoteStorageError,
)
from .keys import normalize_key, normalize_prefix
from .local import LocalStore
from .local.file_ops import file_exists
from .logging_utils import StorageLoggerAdapter, get_storage_logger
from .remote import ObjectInfo, ObjectStoreClient, RetryConfig, retry_with_backoff, with_timeout
from .types import (
    BackendOutcome,
    ConnectionCheck,
    DownloadTarget,
    OperationResult,
    PresignedAccess,
)

logger = get_storage_logger("engine")

DEFAULT_CONTENT_TYPE = "application/octet-stream"

NOT_INITIALIZED_DIAGNOSTIC = "Object store client not initialized. Check credentials or endpoint."

# Errors from the remote side that single-file operations absorb
_REMOTE_ERRORS = (RemoteStorageError, BackendUnavailableError)


def guess_content_type(path: Path) -> str:
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or DEFAULT_CONTENT_TYPE


async def _next_or_none(iterator: AsyncIterator[ObjectInfo]) -> ObjectInfo | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class HybridStorageEngine:
    """Single-file operations across an object store and a local store.

    The remote handle is resolved once at construction and never re-resolved
    except through ``test_connection()``. Remote and local attempts in
    hybrid mode are independent: a failure on one never suppresses the
    other.

    Example:
        >>> engine = HybridStorageEngine(client, LocalStore(root), StoragePolicy(hybrid_mode=True))
        >>> result = await engine.upload(Path("paper.pdf"), "journals/1/paper.pdf")
        >>> result.remote, result.local
        (<BackendOutcome.SUCCEEDED: 'succeeded'>, <BackendOutcome.SUCCEEDED: 'succeeded'>)
    """

    def __init__(
        self,
        remote: ObjectStoreClient | None,
        local: LocalStore,
        policy: StoragePolicy | None = None,
        *,
        object_store: ObjectStoreConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry: RetryConfig | None = None,
        presign_ttl: int = DEFAULT_PRESIGN_TTL,
        context_id: str | None = None,
    ):
        """Initialize the engine.

        Args:
            remote: Object store client, or None when no remote is available
            local: Local backend
            policy: Hybrid/fallback policy
            object_store: Provider configuration, used for public URLs
            timeout: Per-call remote timeout (seconds)
            retry: Retry configuration for transient remote failures
            presign_ttl: Default lifetime of presigned URLs (seconds)
            context_id: Storage context identifier for logs

        Raises:
            BackendUnavailableError: If there is no remote client and the
                policy does not permit local storage
        """
        self.policy = policy or StoragePolicy()
        if remote is None and not self.policy.local_permitted:
            raise BackendUnavailableError(
                "object_store",
                "no object store client and local storage is not permitted by policy",
            )

        self._remote = remote
        self.local = local
        self.object_store = object_store
        self.timeout = timeout
        self.retry = retry or RetryConfig()
        self.presign_ttl = presign_ttl
        self.context_id = context_id
        self.log = StorageLoggerAdapter(
            logger,
            {
                "context_id": context_id,
                "bucket": object_store.bucket if object_store else None,
                "mode": self.policy.mode.value,
            },
        )

    @property
    def remote(self) -> ObjectStoreClient | None:
        return self._remote

    @property
    def remote_available(self) -> bool:
        """Whether an object store client is configured."""
        return self._remote is not None

    async def close(self) -> None:
        """Close the remote client, if any."""
        if self._remote is not None:
            await self._remote.close()

    async def __aenter__(self) -> HybridStorageEngine:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # =========================================================================
    # Backend attempt helpers
    # =========================================================================

    def _require_remote(self) -> ObjectStoreClient:
        if self._remote is None:
            raise BackendUnavailableError("object_store", "client not configured")
        return self._remote

    async def _call_remote(
        self, operation: str, key: str, fn: Callable[..., Awaitable[Any]], *args: Any
    ) -> Any:
        """Run one remote call bounded by the timeout, retrying transient failures."""

        async def attempt() -> Any:
            return await with_timeout(fn(*args), self.timeout, operation, key)

        return await retry_with_backoff(attempt, config=self.retry, context_msg=f"{operation} {key}")

    async def _remote_op(
        self,
        operation: str,
        key: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        missing_ok: bool = False,
    ) -> BackendOutcome:
        if self._remote is None:
            return BackendOutcome.SKIPPED
        try:
            await self._call_remote(operation, key, fn, *args)
            return BackendOutcome.SUCCEEDED
        except KeyNotFoundError as e:
            if missing_ok:
                return BackendOutcome.SUCCEEDED
            self.log.error(f"Remote {operation} failed for {key}: {e.message}")
            return BackendOutcome.FAILED
        except _REMOTE_ERRORS as e:
            self.log.error(f"Remote {operation} failed for {key}: {e.message}")
            return BackendOutcome.FAILED

    async def _local_op(
        self, operation: str, key: str, fn: Callable[..., Awaitable[Any]], *args: Any
    ) -> BackendOutcome:
        try:
            await fn(*args)
            return BackendOutcome.SUCCEEDED
        except LocalIOError as e:
            self.log.error(f"Local {operation} failed for {key}: {e.message}")
            return BackendOutcome.FAILED

    async def _dual(
        self,
        operation: str,
        key: str,
        remote_attempt: Callable[[], Awaitable[BackendOutcome]],
        local_attempt: Callable[[], Awaitable[BackendOutcome]],
    ) -> OperationResult:
        """Apply the policy to one remote and one local attempt."""
        result = OperationResult(key=key, local_permitted=self.policy.local_permitted)

        if self.policy.hybrid_mode:
            result.remote, result.local = await asyncio.gather(remote_attempt(), local_attempt())
        else:
            result.remote = await remote_attempt()
            if self.policy.fallback_enabled and result.remote != BackendOutcome.SUCCEEDED:
                self.log.warning(f"Remote {operation} unavailable for {key}, using local fallback")
                result.local = await local_attempt()

        if not result.succeeded:
            self.log.error(
                f"{operation} failed for {key} "
                f"(remote={result.remote.value}, local={result.local.value})"
            )
        return result

    async def _local_exists(self, key: str) -> bool:
        try:
            return await self.local.exists(key)
        except (LocalIOError, InvalidKeyError):
            return False

    # =========================================================================
    # Writes
    # =========================================================================

    async def _remote_put(self, source: Path, key: str) -> BackendOutcome:
        if self._remote is None:
            return BackendOutcome.SKIPPED
        if not await file_exists(source):
            self.log.error(f"Cannot upload {key}: source file not found: {source}")
            return BackendOutcome.FAILED
        return await self._remote_op("upload", key, self._remote.put, key, source, guess_content_type(source))

    async def upload(self, source_path: Path, key: str) -> OperationResult:
        """Store a local file under a key. The source file is never removed.

        Args:
            source_path: File to upload
            key: Destination key

        Returns:
            OperationResult; truthy when the policy considers it stored
        """
        key = normalize_key(key)
        source = Path(source_path)
        return await self._dual(
            "upload",
            key,
            lambda: self._remote_put(source, key),
            lambda: self._local_op("upload", key, self.local.copy_in, source, key),
        )

    async def upload_to_remote(self, source_path: Path, key: str) -> bool:
        """Upload to the object store only, ignoring the policy's local side."""
        key = normalize_key(key)
        return await self._remote_put(Path(source_path), key) == BackendOutcome.SUCCEEDED

    async def write(self, key: str, data: bytes) -> OperationResult:
        """Store raw bytes under a key, with the same policy as ``upload()``."""
        key = normalize_key(key)
        remote_put = self._remote.put if self._remote is not None else None
        content_type = guess_content_type(Path(key))
        return await self._dual(
            "write",
            key,
            lambda: self._remote_op("write", key, remote_put, key, data, content_type),
            lambda: self._local_op("write", key, self.local.write, key, data),
        )

    async def delete_from_remote(self, key: str) -> bool:
        """Delete from the object store only. Absent keys count as deleted.

        ``key`` is used exactly as stored, without normalization, so keys
        taken from a listing (directory markers such as ``"a/"`` included)
        address the object they came from.
        """
        if not key:
            raise InvalidKeyError(key, "key is empty")
        if self._remote is None:
            return False
        outcome = await self._remote_op("delete", key, self._remote.delete, key, missing_ok=True)
        return outcome == BackendOutcome.SUCCEEDED

    async def copy(self, src_key: str, dst_key: str) -> OperationResult:
        """Copy a key, using a server-side copy on the object store."""
        src_key = normalize_key(src_key)
        dst_key = normalize_key(dst_key)
        remote_copy = self._remote.copy if self._remote is not None else None
        return await self._dual(
            "copy",
            dst_key,
            lambda: self._remote_op("copy", dst_key, remote_copy, src_key, dst_key),
            lambda: self._local_op("copy", dst_key, self.local.copy, src_key, dst_key),
        )

    async def _remote_move(self, src_key: str, dst_key: str) -> BackendOutcome:
        if self._remote is None:
            return BackendOutcome.SKIPPED
        # Object stores have no rename
        try:
            await self._call_remote("copy", dst_key, self._remote.copy, src_key, dst_key)
            await self._call_remote("delete", src_key, self._remote.delete, src_key)
        except _REMOTE_ERRORS as e:
            self.log.error(f"Remote move failed for {src_key} -> {dst_key}: {e.message}")
            return BackendOutcome.FAILED
        return BackendOutcome.SUCCEEDED

    async def move(self, src_key: str, dst_key: str) -> OperationResult:
        """Move a key. The remote side is a server-side copy followed by a delete."""
        src_key = normalize_key(src_key)
        dst_key = normalize_key(dst_key)
        return await self._dual(
            "move",
            dst_key,
            lambda: self._remote_move(src_key, dst_key),
            lambda: self._local_op("move", dst_key, self.local.move, src_key, dst_key),
        )

    async def delete(self, key: str) -> OperationResult:
        """Delete a key. An already-absent key counts as deleted."""
        key = normalize_key(key)
        remote_delete = self._remote.delete if self._remote is not None else None
        return await self._dual(
            "delete",
            key,
            lambda: self._remote_op("delete", key, remote_delete, key, missing_ok=True),
            lambda: self._local_op("delete", key, self.local.delete, key),
        )

    async def make_directory(self, key: str) -> bool:
        """Create a directory. Object stores have none, so this only matters locally."""
        if not self.policy.hybrid_mode:
            return True
        return await self._local_op("mkdir", key, self.local.make_directory, key) == BackendOutcome.SUCCEEDED

    async def _remote_remove_prefix(self, prefix: str) -> BackendOutcome:
        if self._remote is None:
            return BackendOutcome.SKIPPED
        try:
            async for info in self.iter_remote(prefix):
                await self._call_remote("delete", info.key, self._remote.delete, info.key)
        except KeyNotFoundError:
            pass
        except _REMOTE_ERRORS as e:
            self.log.error(f"Remote remove_directory failed for {prefix}: {e.message}")
            return BackendOutcome.FAILED
        return BackendOutcome.SUCCEEDED

    async def remove_directory(self, prefix: str) -> OperationResult:
        """Delete every object under a prefix, and the local directory."""
        prefix = normalize_prefix(prefix)
        if not prefix:
            raise InvalidKeyError(prefix, "refusing to remove the storage root")
        return await self._dual(
            "remove_directory",
            prefix,
            lambda: self._remote_remove_prefix(prefix),
            lambda: self._local_op("remove_directory", prefix, self.local.remove_directory, prefix),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def _diagnostic(self, key: str, error: RemoteStorageError) -> RemoteDiagnosticError:
        reason = str(error.cause) if error.cause is not None else error.message
        self.log.error(f"Object store cannot serve {key} ({error.kind}): {reason}")
        return RemoteDiagnosticError(key, error.kind, reason, error)

    async def _fetch_remote(
        self, operation: str, key: str, fn: Callable[..., Awaitable[Any]] | None, *args: Any
    ) -> tuple[bool, Any]:
        """Serve a read from the object store when it can.

        Returns (True, result) when the store served the key, and
        (False, None) when the caller may try local storage: the store is
        not configured or not available, or it does not have the key.

        Raises:
            RemoteDiagnosticError: If the configured object store fails
        """
        if self._remote is None or fn is None:
            self.log.warning(f"Local fallback for {operation} of {key}: object store client not available")
            return False, None
        try:
            return True, await self._call_remote(operation, key, fn, *args)
        except KeyNotFoundError:
            self.log.info(f"{key} not found in object storage")
        except BackendUnavailableError:
            self.log.warning(f"Object store client unavailable during {operation} of {key}")
        except RemoteStorageError as e:
            raise self._diagnostic(key, e) from e
        return False, None

    async def download(self, key: str, dest_path: Path) -> bool:
        """Fetch the bytes stored under a key into ``dest_path``.

        - Object store not configured: copy from local if the policy allows
        - Object store configured and working: stream the object
        - Object store configured but failing: raise RemoteDiagnosticError
        - Key missing remotely: copy from local if the policy allows

        Raises:
            RemoteDiagnosticError: If the configured object store fails
        """
        key = normalize_key(key)
        dest = Path(dest_path)

        remote_get = self._remote.get if self._remote is not None else None
        served, _ = await self._fetch_remote("download", key, remote_get, key, dest)
        if served:
            return True

        if self.policy.local_permitted and await self._local_exists(key):
            outcome = await self._local_op("download", key, self.local.copy_out, key, dest)
            return outcome == BackendOutcome.SUCCEEDED
        return False

    async def read(self, key: str) -> bytes | None:
        """Content stored under a key, or None if it is absent everywhere.

        Branches exactly like ``download()``: a configured object store that
        fails for any reason other than a missing key is never masked by the
        local copy.

        Raises:
            RemoteDiagnosticError: If the configured object store fails
        """
        key = normalize_key(key)

        remote_read = self._remote.read if self._remote is not None else None
        served, data = await self._fetch_remote("read", key, remote_read, key)
        if served:
            return data

        if self.policy.local_permitted and await self._local_exists(key):
            try:
                return await self.local.read(key)
            except LocalIOError as e:
                self.log.error(f"Local read failed for {key}: {e.message}")
        return None

    async def download_from_remote(self, key: str, dest_path: Path) -> bool:
        """Stream an object to a local path. Errors are logged, not raised."""
        key = normalize_key(key)
        if self._remote is None:
            return False
        try:
            await self._call_remote("download", key, self._remote.get, key, Path(dest_path))
            return True
        except _REMOTE_ERRORS as e:
            self.log.error(f"Remote download failed for {key}: {e.message}")
            return False

    async def _presign(self, key: str, ttl: int) -> PresignedAccess:
        remote = self._require_remote()
        url = await self._call_remote("presign", key, remote.presign, key, ttl)
        return PresignedAccess(url=url, expires_at=datetime.now(UTC) + timedelta(seconds=ttl))

    async def resolve_download(self, key: str, ttl: int | None = None) -> DownloadTarget | None:
        """Decide where a caller should fetch a key from, preferring a redirect.

        Serving through a presigned URL avoids moving the bytes through this
        process. When presigning fails on a configured store, the object is
        checked once more with a head request so the diagnostic names the actual cause.

        Returns:
            DownloadTarget, or None if the key is not available anywhere

        Raises:
            RemoteDiagnosticError: If the configured object store fails
        """
        key = normalize_key(key)
        ttl = ttl or self.presign_ttl

        if self._remote is not None:
            try:
                return DownloadTarget(access=await self._presign(key, ttl))
            except BackendUnavailableError:
                self.log.warning(f"Object store client unavailable while presigning {key}")
            except RemoteStorageError as e:
                cause: RemoteStorageError = e
                try:
                    await self._call_remote("head", key, self._remote.head, key)
                except RemoteStorageError as head_error:
                    cause = head_error
                raise self._diagnostic(key, cause) from e

        if self.policy.local_permitted and await self._local_exists(key):
            return DownloadTarget(local_path=self.local.path_for(key))
        return None

    async def get_temporary_url(self, key: str, ttl: int | None = None) -> PresignedAccess | None:
        """Presigned URL for a key, or None if unavailable."""
        key = normalize_key(key)
        if self._remote is None:
            return None
        try:
            return await self._presign(key, ttl or self.presign_ttl)
        except _REMOTE_ERRORS as e:
            self.log.error(f"Failed to generate temporary URL for {key}: {e.message}")
            return None

    def get_public_url(self, key: str) -> str:
        """Static public URL for a key. Never touches the network."""
        if self.object_store is None:
            raise ConfigurationError("object_store", "no object store configured")
        return build_public_url(self.object_store, key)

    async def exists_in_remote(self, key: str) -> bool:
        key = normalize_key(key)
        if self._remote is None:
            return False
        try:
            await self._call_remote("head", key, self._remote.head, key)
            return True
        except KeyNotFoundError:
            return False
        except _REMOTE_ERRORS as e:
            self.log.warning(f"Remote existence check failed for {key}: {e.message}")
            return False

    async def exists(self, key: str) -> bool:
        """Whether a key exists.

        In hybrid mode this is the union of both backends, which tolerates
        one backend lagging behind the other.
        """
        key = normalize_key(key)
        if self.policy.hybrid_mode:
            return await self.exists_in_remote(key) or await self._local_exists(key)

        if self._remote is not None and await self.exists_in_remote(key):
            return True
        if self.policy.fallback_enabled:
            return await self._local_exists(key)
        return False

    async def size(self, key: str) -> int | None:
        """Size in bytes, remote first. None if the key is absent."""
        key = normalize_key(key)
        if self._remote is not None:
            try:
                return await self._call_remote("head", key, self._remote.head, key)
            except KeyNotFoundError:
                pass
            except _REMOTE_ERRORS as e:
                self.log.warning(f"Remote size lookup failed for {key}: {e.message}")

        if self.policy.local_permitted:
            try:
                return await self.local.size(key)
            except LocalIOError as e:
                self.log.error(f"Local size lookup failed for {key}: {e.message}")
        return None

    async def iter_remote(
        self, prefix: str = "", max_keys: int | None = None, delimiter: str | None = None
    ) -> AsyncIterator[ObjectInfo]:
        """Stream the remote listing, each page fetch bounded by the timeout.

        With ``delimiter="/"`` only objects directly under ``prefix`` are
        listed.

        Raises:
            BackendUnavailableError: If no object store is configured
            RemoteStorageError: If the listing fails
        """
        remote = self._require_remote()
        iterator = remote.list(prefix, max_keys, delimiter)
        try:
            while True:
                info = await with_timeout(_next_or_none(iterator), self.timeout, "list", prefix)
                if info is None:
                    return
                yield info
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def list_directory(self, prefix: str, pattern: str | re.Pattern[str] | None = None) -> list[str]:
        """File names directly under a prefix.

        Args:
            prefix: Directory prefix
            pattern: Optional regex matched (re.search) against each name

        Returns:
            Names in first-seen order, duplicates across backends collapsed
        """
        prefix = normalize_prefix(prefix)
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        names: dict[str, None] = {}

        def add(name: str) -> None:
            if regex is None or regex.search(name):
                names.setdefault(name, None)

        remote_listed = False
        if self._remote is not None:
            try:
                async for info in self.iter_remote(prefix, delimiter="/"):
                    rest = info.key[len(prefix) :]
                    if rest and "/" not in rest:
                        add(rest)
                remote_listed = True
            except _REMOTE_ERRORS as e:
                self.log.error(f"Failed to list directory contents for {prefix!r}: {e.message}")

        if self.policy.hybrid_mode or (self.policy.fallback_enabled and not remote_listed):
            try:
                for name in await self.local.list_directory(prefix):
                    add(name)
            except LocalIOError as e:
                self.log.error(f"Failed to list local directory {prefix!r}: {e.message}")

        return list(names)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def test_connection(self) -> ConnectionCheck:
        """Probe the object store with a one-key listing. Never raises."""
        if self._remote is None:
            return ConnectionCheck(ok=False, diagnostic=NOT_INITIALIZED_DIAGNOSTIC)

        listing = self.iter_remote("", max_keys=1)
        try:
            await anext(listing, None)
        except RemoteStorageError as e:
            reason = e.cause if e.cause is not None else e.message
            diagnostic = f"{e.kind}: {reason}"
        except BackendUnavailableError as e:
            diagnostic = f"{type(e).__name__}: {e.message}"
        except Exception as e:
            diagnostic = f"Generic Error: {e}"
        else:
            return ConnectionCheck(ok=True)
        finally:
            await listing.aclose()

        self.log.error(f"Connection test failed: {diagnostic}")
        return ConnectionCheck(ok=False, diagnostic=diagnostic)
