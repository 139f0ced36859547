"""
Shared test configuration and fixtures.

Provides an in-memory object store so engine, reconciliation and health
tests run without network access. Failures are injected per operation.
"""

import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path

import pytest

from s3_hybrid_storage.config import ObjectStoreConfig, StoragePolicy
from s3_hybrid_storage.engine import HybridStorageEngine
from s3_hybrid_storage.exceptions import KeyNotFoundError
from s3_hybrid_storage.local import LocalStore
from s3_hybrid_storage.remote import ObjectInfo, ObjectStoreClient, RetryConfig

logger = logging.getLogger(__name__)

# Sentinel: "use the default fake store" as opposed to an explicit None
DEFAULT = object()


class FakeObjectStore(ObjectStoreClient):
    """
    In-memory object store for testing.

    Objects live in a dict. ``fail(operation, error)`` makes every later
    call of that operation raise ``error``; ``list_error_after`` makes a
    listing raise after yielding that many entries.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.list_error_after: tuple[int, Exception] | None = None
        self.list_delimiters: list[str | None] = []
        self.closed = False

    def fail(self, operation: str, error: Exception) -> None:
        self.failures[operation] = error

    def recover(self, operation: str | None = None) -> None:
        if operation is None:
            self.failures.clear()
        else:
            self.failures.pop(operation, None)

    def _check(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        error = self.failures.get(operation)
        if error is not None:
            raise error

    async def put(self, key: str, source: Path | bytes, content_type: str) -> None:
        self._check("put", key)
        self.objects[key] = source if isinstance(source, bytes) else Path(source).read_bytes()

    async def get(self, key: str, dest_path: Path) -> None:
        self._check("get", key)
        if key not in self.objects:
            raise KeyNotFoundError(key, "get")
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest_path.write_bytes(self.objects[key])

    async def read(self, key: str) -> bytes:
        self._check("read", key)
        if key not in self.objects:
            raise KeyNotFoundError(key, "read")
        return self.objects[key]

    async def delete(self, key: str) -> None:
        self._check("delete", key)
        self.objects.pop(key, None)

    async def head(self, key: str) -> int:
        self._check("head", key)
        if key not in self.objects:
            raise KeyNotFoundError(key, "head")
        return len(self.objects[key])

    async def list(
        self, prefix: str = "", max_keys: int | None = None, delimiter: str | None = None
    ) -> AsyncIterator[ObjectInfo]:
        self._check("list", prefix)
        self.list_delimiters.append(delimiter)
        # Snapshot like a fetched page, so deletes during iteration are safe
        keys = sorted(
            k
            for k in self.objects
            if k.startswith(prefix) and not (delimiter and delimiter in k[len(prefix) :])
        )
        for index, key in enumerate(keys):
            if max_keys is not None and index >= max_keys:
                return
            if self.list_error_after is not None and index >= self.list_error_after[0]:
                raise self.list_error_after[1]
            yield ObjectInfo(key=key, size=len(self.objects.get(key, b"")))

    async def presign(self, key: str, ttl: int) -> str:
        self._check("presign", key)
        return f"https://fake-bucket.example.com/{key}?X-Amz-Expires={ttl}"

    async def copy(self, src_key: str, dst_key: str) -> None:
        self._check("copy", dst_key)
        if src_key not in self.objects:
            raise KeyNotFoundError(src_key, "copy")
        self.objects[dst_key] = self.objects[src_key]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def object_store_config() -> ObjectStoreConfig:
    return ObjectStoreConfig(
        bucket="test-bucket",
        access_key="AKIATEST",
        secret_key="secret",
        region="eu-west-1",
    )


@pytest.fixture
def local_root(tmp_path: Path) -> Path:
    root = tmp_path / "files"
    root.mkdir()
    return root


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    path = tmp_path / "upload" / "paper.pdf"
    path.parent.mkdir()
    path.write_bytes(b"%PDF-1.4 test content")
    return path


@pytest.fixture
def make_engine(
    fake_store: FakeObjectStore,
    local_root: Path,
    object_store_config: ObjectStoreConfig,
) -> Callable[..., HybridStorageEngine]:
    """Factory for engines over the fake store and a temporary local root.

    Retries are disabled so failure tests never sleep.
    """

    def _make(policy: StoragePolicy | None = None, remote: object = DEFAULT) -> HybridStorageEngine:
        return HybridStorageEngine(
            fake_store if remote is DEFAULT else remote,
            LocalStore(local_root),
            policy or StoragePolicy(),
            object_store=object_store_config,
            timeout=5.0,
            retry=RetryConfig(max_retries=0),
            context_id="test-context",
        )

    return _make
