"""Tests for bulk reconciliation."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from s3_hybrid_storage.config import StoragePolicy
from s3_hybrid_storage.engine import HybridStorageEngine
from s3_hybrid_storage.exceptions import ConfigurationError, TransientRemoteError
from s3_hybrid_storage.reconcile import CLOUD_UNAVAILABLE, ReconciliationEngine

from conftest import FakeObjectStore

MakeEngine = Callable[..., HybridStorageEngine]


def write_tree(root: Path, files: dict[str, bytes]) -> None:
    for relative, data in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    root = tmp_path / "tree"
    write_tree(
        root,
        {
            "a.txt": b"alpha",
            "articles/1/paper.pdf": b"paper",
            "articles/2/figure.png": b"figure",
        },
    )
    return root


@pytest.fixture
def reconciler(make_engine: MakeEngine) -> ReconciliationEngine:
    return ReconciliationEngine(make_engine(), max_concurrency=3)


class TestConstruction:
    def test_rejects_zero_concurrency(self, make_engine: MakeEngine) -> None:
        with pytest.raises(ConfigurationError):
            ReconciliationEngine(make_engine(), max_concurrency=0)

    def test_logs_with_engine_context(self, make_engine: MakeEngine) -> None:
        log = ReconciliationEngine(make_engine()).log

        assert log.logger.name == "s3_hybrid_storage.reconcile"
        assert log.extra["context_id"] == "test-context"
        assert log.extra["component"] == "reconcile"


class TestSyncToRemote:
    """Tests for sync_to_remote."""

    async def test_uploads_every_file(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tree: Path
    ) -> None:
        report = await reconciler.sync_to_remote(tree, "journals/12")

        assert report.success
        assert report.success_count == 3
        assert fake_store.objects == {
            "journals/12/a.txt": b"alpha",
            "journals/12/articles/1/paper.pdf": b"paper",
            "journals/12/articles/2/figure.png": b"figure",
        }

    async def test_user_files_with_temp_like_names_are_synced(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tree: Path
    ) -> None:
        """Only leftovers of atomic writes are skipped, not every dot-tmp name."""
        write_tree(tree, {".tmp_notes.txt": b"notes", "articles/1/.tmp_k3x9q2ab": b"partial"})

        report = await reconciler.sync_to_remote(tree)

        assert report.success_count == 4
        assert fake_store.objects[".tmp_notes.txt"] == b"notes"
        assert "articles/1/.tmp_k3x9q2ab" not in fake_store.objects

    async def test_is_idempotent(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tree: Path
    ) -> None:
        first = await reconciler.sync_to_remote(tree)
        snapshot = dict(fake_store.objects)

        second = await reconciler.sync_to_remote(tree)

        assert first.success_count == second.success_count == 3
        assert second.failed_count == 0
        assert fake_store.objects == snapshot

    async def test_delete_local_after(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tree: Path
    ) -> None:
        report = await reconciler.sync_to_remote(tree, delete_local_after=True)

        assert report.success_count == 3
        assert not list(p for p in tree.rglob("*") if p.is_file())
        assert len(fake_store.objects) == 3

    async def test_failed_upload_keeps_local_file(self, make_engine: MakeEngine, tree: Path) -> None:
        """A file whose upload failed is never deleted locally."""

        class FlakyStore(FakeObjectStore):
            async def put(self, key: str, source: Path | bytes, content_type: str) -> None:
                if key.endswith("paper.pdf"):
                    raise TransientRemoteError("put", key, ConnectionError("reset"))
                await super().put(key, source, content_type)

        reconciler = ReconciliationEngine(make_engine(remote=FlakyStore()))

        report = await reconciler.sync_to_remote(tree, delete_local_after=True)

        assert report.success_count == 2
        assert report.failed_count == 1
        assert report.errors == ["Failed to sync: articles/1/paper.pdf"]
        assert (tree / "articles" / "1" / "paper.pdf").exists()
        assert not (tree / "a.txt").exists()

    async def test_remote_unavailable(self, make_engine: MakeEngine, tree: Path) -> None:
        reconciler = ReconciliationEngine(make_engine(StoragePolicy(), remote=None))

        report = await reconciler.sync_to_remote(tree)

        assert report.errors == [CLOUD_UNAVAILABLE]
        assert report.success_count == 0

    async def test_missing_root(self, reconciler: ReconciliationEngine, tmp_path: Path) -> None:
        missing = tmp_path / "missing"

        report = await reconciler.sync_to_remote(missing)

        assert report.errors == [f"Local directory not found: {missing}"]

    async def test_cancelled_before_start(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tree: Path
    ) -> None:
        cancel = asyncio.Event()
        cancel.set()

        report = await reconciler.sync_to_remote(tree, cancel_event=cancel)

        assert report.cancelled
        assert report.success_count == 0
        assert fake_store.objects == {}

    async def test_cancelled_mid_run(self, make_engine: MakeEngine, tmp_path: Path) -> None:
        """Setting the event stops the run between items."""
        root = tmp_path / "many"
        write_tree(root, {f"f{i:03d}.txt": b"x" for i in range(50)})
        cancel = asyncio.Event()

        class CancellingStore(FakeObjectStore):
            async def put(self, key: str, source: Path | bytes, content_type: str) -> None:
                await super().put(key, source, content_type)
                if len(self.objects) >= 5:
                    cancel.set()
                await asyncio.sleep(0)

        store = CancellingStore()
        reconciler = ReconciliationEngine(make_engine(remote=store), max_concurrency=2)

        report = await reconciler.sync_to_remote(root, cancel_event=cancel)

        assert report.cancelled
        assert 5 <= report.success_count < 50
        assert len(store.objects) == report.success_count


class TestSyncFromRemote:
    """Tests for sync_from_remote."""

    async def test_restores_objects(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tmp_path: Path
    ) -> None:
        fake_store.objects.update(
            {
                "journals/12/a.txt": b"alpha",
                "journals/12/articles/1/paper.pdf": b"paper",
                "journals/12/articles/": b"",
                "journals/13/other.txt": b"other",
            }
        )
        target = tmp_path / "restore"

        report = await reconciler.sync_from_remote(target, "journals/12")

        assert report.success
        assert report.success_count == 2
        assert (target / "a.txt").read_bytes() == b"alpha"
        assert (target / "articles" / "1" / "paper.pdf").read_bytes() == b"paper"
        assert not (target / "other.txt").exists()

    async def test_rejects_traversal(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tmp_path: Path
    ) -> None:
        fake_store.objects["../escape.txt"] = b"evil"
        fake_store.objects["ok.txt"] = b"fine"
        target = tmp_path / "restore"

        report = await reconciler.sync_from_remote(target)

        assert report.success_count == 1
        assert report.failed_count == 1
        assert not (tmp_path / "escape.txt").exists()

    async def test_download_failure_recorded(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tmp_path: Path
    ) -> None:
        fake_store.objects["a.txt"] = b"alpha"
        fake_store.fail("get", TransientRemoteError("get", "a.txt", ConnectionError("reset")))

        report = await reconciler.sync_from_remote(tmp_path / "restore")

        assert report.failed_count == 1
        assert report.errors == ["Failed to download: a.txt"]

    async def test_listing_failure_recorded(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tmp_path: Path
    ) -> None:
        fake_store.objects.update({"a.txt": b"a", "b.txt": b"b", "c.txt": b"c"})
        fake_store.list_error_after = (2, TransientRemoteError("list", "", ConnectionError("reset")))

        report = await reconciler.sync_from_remote(tmp_path / "restore")

        assert report.success_count == 2
        assert report.errors[-1] == "Listing failed: TransientRemoteError: reset"

    async def test_directory_creation_failure(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, tmp_path: Path
    ) -> None:
        target = tmp_path / "restore"
        target.mkdir()
        (target / "blocked").write_text("a file where a directory should be")
        fake_store.objects["blocked/a.txt"] = b"a"

        report = await reconciler.sync_from_remote(target)

        assert report.failed_count == 1
        assert report.errors == [f"Failed to create directory: {target / 'blocked'}"]


class TestCleanupOrphans:
    """Tests for cleanup_orphans."""

    async def test_deletes_only_orphans(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore
    ) -> None:
        fake_store.objects.update({"a/b": b"1", "a/c": b"2", "a/d": b"3"})

        report = await reconciler.cleanup_orphans({"a/b"}, "a/")

        assert report.deleted_count == 2
        assert report.scanned_count == 3
        assert set(fake_store.objects) == {"a/b"}

    async def test_scoped_to_prefix(self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore) -> None:
        fake_store.objects.update({"a/b": b"1", "other/x": b"2"})

        report = await reconciler.cleanup_orphans([], "a")

        assert report.deleted_count == 1
        assert "other/x" in fake_store.objects

    async def test_delete_failure_continues(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore
    ) -> None:
        fake_store.objects.update({"a/c": b"2", "a/d": b"3"})
        fake_store.fail("delete", TransientRemoteError("delete", None, ConnectionError("reset")))

        report = await reconciler.cleanup_orphans(set(), "a/")

        assert report.deleted_count == 0
        assert sorted(report.errors) == ["Failed to delete: a/c", "Failed to delete: a/d"]

    async def test_remote_unavailable(self, make_engine: MakeEngine) -> None:
        reconciler = ReconciliationEngine(make_engine(StoragePolicy(), remote=None))

        report = await reconciler.cleanup_orphans(set())

        assert report.errors == [CLOUD_UNAVAILABLE]


class TestOffloadFile:
    """Tests for offload_file."""

    async def test_offload_keeps_local_by_default(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, local_root: Path
    ) -> None:
        write_tree(local_root, {"journals/1/a.pdf": b"a"})

        assert await reconciler.offload_file(local_root / "journals/1/a.pdf", "journals/1/a.pdf")

        assert fake_store.objects["journals/1/a.pdf"] == b"a"
        assert (local_root / "journals/1/a.pdf").exists()

    async def test_offload_deletes_and_prunes(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, local_root: Path
    ) -> None:
        write_tree(local_root, {"journals/1/a.pdf": b"a", "keep.txt": b"k"})

        assert await reconciler.offload_file(
            local_root / "journals/1/a.pdf", "journals/1/a.pdf", delete_local=True
        )

        assert not (local_root / "journals").exists()
        assert (local_root / "keep.txt").exists()
        assert local_root.exists()

    async def test_offload_keeps_local_when_unverified(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, local_root: Path
    ) -> None:
        write_tree(local_root, {"a.pdf": b"a"})
        fake_store.fail("head", TransientRemoteError("head", "a.pdf", ConnectionError("reset")))

        assert await reconciler.offload_file(local_root / "a.pdf", "a.pdf", delete_local=True)

        assert (local_root / "a.pdf").exists()

    async def test_offload_failure(
        self, reconciler: ReconciliationEngine, fake_store: FakeObjectStore, local_root: Path
    ) -> None:
        write_tree(local_root, {"a.pdf": b"a"})
        fake_store.fail("put", TransientRemoteError("put", "a.pdf", ConnectionError("reset")))

        assert not await reconciler.offload_file(local_root / "a.pdf", "a.pdf", delete_local=True)
        assert (local_root / "a.pdf").exists()
