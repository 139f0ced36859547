"""Local filesystem backend.

Maps storage keys onto files below a root directory. The same key names
the same logical file here and in the object store.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

from ..exceptions import InvalidKeyError
from ..keys import normalize_key, normalize_prefix
from . import file_ops


class LocalStore:
    """Key-addressed view over a local directory tree."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"LocalStore(root={str(self.root)!r})"

    def path_for(self, key: str) -> Path:
        """Resolve a key to a path below the root."""
        key = normalize_key(key)
        path = self.root / Path(*key.split("/"))
        root = self.root.resolve()
        if root != path.resolve() and root not in path.resolve().parents:
            raise InvalidKeyError(key, "resolves outside the local root")
        return path

    def _dir_for(self, prefix: str) -> Path:
        prefix = normalize_prefix(prefix)
        return self.path_for(prefix) if prefix else self.root

    async def copy_in(self, source_path: Path, key: str) -> None:
        """Copy an external file into the store under ``key``."""
        await file_ops.copy_file_atomic(Path(source_path), self.path_for(key))

    async def copy_out(self, key: str, dest_path: Path) -> None:
        """Copy the file stored under ``key`` to an external path."""
        await file_ops.copy_file_atomic(self.path_for(key), Path(dest_path))

    async def copy(self, src_key: str, dst_key: str) -> None:
        await file_ops.copy_file_atomic(self.path_for(src_key), self.path_for(dst_key))

    async def move(self, src_key: str, dst_key: str) -> None:
        await file_ops.move_file(self.path_for(src_key), self.path_for(dst_key))

    async def read(self, key: str) -> bytes:
        return await file_ops.read_bytes(self.path_for(key))

    async def write(self, key: str, data: bytes) -> None:
        """Replace the content stored under ``key`` atomically."""
        await file_ops.write_bytes_atomic(self.path_for(key), data)

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns False if it was already absent."""
        return await file_ops.remove_file(self.path_for(key))

    async def exists(self, key: str) -> bool:
        return await file_ops.file_exists(self.path_for(key))

    async def size(self, key: str) -> int | None:
        return await file_ops.file_size(self.path_for(key))

    async def make_directory(self, key: str) -> None:
        await file_ops.ensure_directory(self._dir_for(key))

    async def remove_directory(self, key: str) -> bool:
        directory = self._dir_for(key)
        if directory == self.root:
            raise InvalidKeyError(key, "refusing to remove the local root")
        return await file_ops.remove_directory(directory)

    async def list_directory(self, prefix: str) -> list[str]:
        """Names of files directly under a prefix."""
        return await file_ops.list_files(self._dir_for(prefix))

    async def iter_tree(self, root: Path | None = None) -> AsyncIterator[Path]:
        """Depth-first walk of files below ``root`` (default: the store root)."""
        async for path in file_ops.iter_files(Path(root) if root is not None else self.root):
            yield path
