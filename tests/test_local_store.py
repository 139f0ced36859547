"""Tests for the local filesystem backend."""

from __future__ import annotations

from pathlib import Path

import pytest

from s3_hybrid_storage.exceptions import InvalidKeyError, LocalIOError
from s3_hybrid_storage.local import LocalStore
from s3_hybrid_storage.local import file_ops


@pytest.fixture
def store(local_root: Path) -> LocalStore:
    return LocalStore(local_root)


class TestFileOps:
    """Tests for the async file primitives."""

    async def test_write_and_read_atomic(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "file.bin"

        await file_ops.write_bytes_atomic(path, b"payload")

        assert await file_ops.read_bytes(path) == b"payload"
        assert [p.name for p in path.parent.iterdir()] == ["file.bin"]

    async def test_copy_missing_source(self, tmp_path: Path) -> None:
        with pytest.raises(LocalIOError):
            await file_ops.copy_file_atomic(tmp_path / "missing", tmp_path / "target")

    async def test_ensure_directory_is_race_safe(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b"
        await file_ops.ensure_directory(target)
        await file_ops.ensure_directory(target)
        assert target.is_dir()

    async def test_remove_file_absent(self, tmp_path: Path) -> None:
        assert await file_ops.remove_file(tmp_path / "missing") is False

    async def test_iter_files_depth_first_skips_temp_files(self, tmp_path: Path) -> None:
        (tmp_path / "b" / "c").mkdir(parents=True)
        (tmp_path / "a.txt").write_text("a")
        (tmp_path / "b" / "c" / "d.txt").write_text("d")
        (tmp_path / "b" / ".tmp_q7w2e9rz").write_text("partial")
        (tmp_path / "b" / ".tmp_notes.txt").write_text("user file")

        found = [p.relative_to(tmp_path).as_posix() async for p in file_ops.iter_files(tmp_path)]

        assert found == ["a.txt", "b/.tmp_notes.txt", "b/c/d.txt"]

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            (".tmp_q7w2e9rz", True),
            (".tmp_ab_cd_01", True),
            (".tmp_notes.txt", False),
            (".tmp_short", False),
            (".tmp_UPPERCAS", False),
            ("x.tmp_q7w2e9rz", False),
        ],
    )
    def test_is_temp_file(self, name: str, expected: bool) -> None:
        assert file_ops.is_temp_file(name) is expected

    async def test_move_file(self, tmp_path: Path) -> None:
        source = tmp_path / "a.txt"
        source.write_text("a")

        await file_ops.move_file(source, tmp_path / "moved" / "b.txt")

        assert not source.exists()
        assert (tmp_path / "moved" / "b.txt").read_text() == "a"

    async def test_move_missing_source(self, tmp_path: Path) -> None:
        with pytest.raises(LocalIOError):
            await file_ops.move_file(tmp_path / "missing", tmp_path / "target")

    async def test_iter_files_missing_root(self, tmp_path: Path) -> None:
        assert [p async for p in file_ops.iter_files(tmp_path / "missing")] == []

    async def test_prune_empty_directories(self, tmp_path: Path) -> None:
        deep = tmp_path / "a" / "b" / "c"
        deep.mkdir(parents=True)
        (tmp_path / "a" / "keep.txt").write_text("k")

        removed = await file_ops.prune_empty_directories(deep, tmp_path)

        assert removed == 2
        assert (tmp_path / "a").is_dir()
        assert not (tmp_path / "a" / "b").exists()

    async def test_prune_never_removes_stop_at(self, tmp_path: Path) -> None:
        root = tmp_path / "root"
        root.mkdir()
        assert await file_ops.prune_empty_directories(root, root) == 0
        assert root.is_dir()


class TestLocalStore:
    """Tests for LocalStore."""

    def test_path_for(self, store: LocalStore, local_root: Path) -> None:
        assert store.path_for("/a/b.txt") == local_root / "a" / "b.txt"

    def test_path_for_rejects_traversal(self, store: LocalStore) -> None:
        with pytest.raises(InvalidKeyError):
            store.path_for("a/../../etc/passwd")

    async def test_copy_in_and_out(self, store: LocalStore, source_file: Path, tmp_path: Path) -> None:
        await store.copy_in(source_file, "docs/paper.pdf")
        await store.copy_out("docs/paper.pdf", tmp_path / "out.pdf")

        assert (tmp_path / "out.pdf").read_bytes() == source_file.read_bytes()
        assert await store.exists("docs/paper.pdf")
        assert await store.size("docs/paper.pdf") == source_file.stat().st_size

    async def test_copy(self, store: LocalStore, local_root: Path) -> None:
        (local_root / "a.txt").write_text("a")

        await store.copy("a.txt", "copies/a.txt")

        assert (local_root / "copies" / "a.txt").read_text() == "a"

    async def test_write_and_read(self, store: LocalStore, local_root: Path) -> None:
        await store.write("notes/today.txt", b"first")
        await store.write("notes/today.txt", b"second")

        assert await store.read("notes/today.txt") == b"second"
        assert (local_root / "notes" / "today.txt").read_bytes() == b"second"

    async def test_read_missing(self, store: LocalStore) -> None:
        with pytest.raises(LocalIOError):
            await store.read("missing.txt")

    async def test_move(self, store: LocalStore, local_root: Path) -> None:
        (local_root / "a.txt").write_text("a")

        await store.move("a.txt", "archive/a.txt")

        assert not await store.exists("a.txt")
        assert (local_root / "archive" / "a.txt").read_text() == "a"

    async def test_delete(self, store: LocalStore, local_root: Path) -> None:
        (local_root / "a.txt").write_text("a")

        assert await store.delete("a.txt") is True
        assert await store.delete("a.txt") is False

    async def test_list_directory(self, store: LocalStore, local_root: Path) -> None:
        (local_root / "dir" / "sub").mkdir(parents=True)
        (local_root / "dir" / "b.txt").write_text("b")
        (local_root / "dir" / "a.txt").write_text("a")
        (local_root / "dir" / ".tmp_q7w2e9rz").write_text("partial")

        assert await store.list_directory("dir") == ["a.txt", "b.txt"]
        assert await store.list_directory("missing") == []

    async def test_make_and_remove_directory(self, store: LocalStore, local_root: Path) -> None:
        await store.make_directory("x/y")
        assert (local_root / "x" / "y").is_dir()

        assert await store.remove_directory("x") is True
        assert not (local_root / "x").exists()

    async def test_remove_root_refused(self, store: LocalStore) -> None:
        with pytest.raises(InvalidKeyError):
            await store.remove_directory("")

    async def test_iter_tree(self, store: LocalStore, local_root: Path) -> None:
        (local_root / "a").mkdir()
        (local_root / "a" / "b.txt").write_text("b")

        assert [p async for p in store.iter_tree()] == [local_root / "a" / "b.txt"]
