"""
File operations for the local backend.

Provides async filesystem primitives with:
- Atomic copies using temp file + rename
- Race-safe directory creation
- Depth-first tree walking without loading the whole tree into memory
"""

import os
import re
import shutil
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path

import aiofiles
import aiofiles.os

from ..exceptions import LocalIOError

# Prefix of the temp files created by atomic writes
TEMP_PREFIX = ".tmp_"

# mkstemp appends eight characters from [a-z0-9_] to the prefix
_TEMP_NAME = re.compile(re.escape(TEMP_PREFIX) + r"[a-z0-9_]{8}")


def is_temp_file(name: str) -> bool:
    """Whether a file name is a leftover temp file from an atomic write."""
    return _TEMP_NAME.fullmatch(name) is not None


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary.

    Concurrent creation of the same directory is not an error; only
    failing to end up with the directory present is.

    Args:
        path: Directory path to ensure exists
    """
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        if not await aiofiles.os.path.isdir(path):
            raise LocalIOError("create_directory", str(path), e) from e


async def file_exists(path: Path) -> bool:
    """Check if a regular file exists.

    Args:
        path: Path to check

    Returns:
        True if a file exists at path
    """
    try:
        return await aiofiles.os.path.isfile(path)
    except OSError:
        return False


async def file_size(path: Path) -> int | None:
    """Size of a file in bytes, or None if it does not exist."""
    try:
        if not await aiofiles.os.path.isfile(path):
            return None
        return await aiofiles.os.path.getsize(path)
    except OSError as e:
        raise LocalIOError("size", str(path), e) from e


async def copy_file_atomic(source: Path, target: Path) -> None:
    """Copy a file atomically using temp file + rename.

    Args:
        source: File to copy
        target: Destination path (parent directories are created)
    """
    if not await aiofiles.os.path.isfile(source):
        raise LocalIOError("copy", str(source), FileNotFoundError(f"File not found: {source}"))

    await ensure_directory(target.parent)

    fd, temp_path = tempfile.mkstemp(dir=target.parent, prefix=TEMP_PREFIX)
    try:
        os.close(fd)
        await aiofiles.os.wrap(shutil.copyfile)(source, temp_path)
        await aiofiles.os.replace(temp_path, target)
    except Exception as e:
        # Clean up temp file on error
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise LocalIOError("copy", str(target), e) from e


async def read_bytes(path: Path) -> bytes:
    """Read a whole file."""
    try:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()
    except OSError as e:
        raise LocalIOError("read", str(path), e) from e


async def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write a file atomically using temp file + rename."""
    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=TEMP_PREFIX)
    try:
        os.close(fd)
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)
            await f.flush()
            os.fsync(f.fileno())
        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise LocalIOError("write", str(path), e) from e


async def move_file(source: Path, target: Path) -> None:
    """Rename a file, creating the target's parent directories.

    Both paths are expected on the same filesystem, so the rename is atomic.
    """
    if not await aiofiles.os.path.isfile(source):
        raise LocalIOError("move", str(source), FileNotFoundError(f"File not found: {source}"))

    await ensure_directory(target.parent)
    try:
        await aiofiles.os.replace(source, target)
    except OSError as e:
        raise LocalIOError("move", str(target), e) from e


async def remove_file(path: Path) -> bool:
    """Remove a file if it exists.

    Args:
        path: Path to remove

    Returns:
        True if file was removed, False if it didn't exist
    """
    try:
        await aiofiles.os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise LocalIOError("remove", str(path), e) from e


async def remove_directory(path: Path) -> bool:
    """Remove a directory and all contents.

    Args:
        path: Directory to remove

    Returns:
        True if removed, False if didn't exist
    """
    try:
        if await aiofiles.os.path.isdir(path):
            await aiofiles.os.wrap(shutil.rmtree)(path)
            return True
        return False
    except OSError as e:
        raise LocalIOError("remove_directory", str(path), e) from e


async def list_files(path: Path) -> list[str]:
    """List names of regular files directly inside a directory.

    Args:
        path: Directory to list

    Returns:
        Sorted file names (empty if the directory doesn't exist)
    """
    try:
        if not await aiofiles.os.path.isdir(path):
            return []

        entries = await aiofiles.os.listdir(path)
        files = []
        for entry in sorted(entries):
            if not is_temp_file(entry) and await aiofiles.os.path.isfile(path / entry):
                files.append(entry)
        return files
    except OSError as e:
        raise LocalIOError("list_files", str(path), e) from e


async def iter_files(root: Path) -> AsyncIterator[Path]:
    """Walk a directory tree depth-first, yielding regular files.

    Directories are descended into but never yielded. Temp files left by
    interrupted atomic writes are skipped.

    Args:
        root: Directory to walk

    Yields:
        File paths, one at a time
    """
    try:
        entries = sorted(await aiofiles.os.listdir(root))
    except FileNotFoundError:
        return
    except OSError as e:
        raise LocalIOError("list_tree", str(root), e) from e

    for entry in entries:
        path = root / entry
        if await aiofiles.os.path.isdir(path):
            async for child in iter_files(path):
                yield child
        elif await aiofiles.os.path.isfile(path) and not is_temp_file(entry):
            yield path


async def prune_empty_directories(start: Path, stop_at: Path) -> int:
    """Remove empty directories from ``start`` upward, stopping at ``stop_at``.

    Returns:
        Number of directories removed
    """
    removed = 0
    current = start
    stop_at = stop_at.resolve()
    while current.resolve() != stop_at and stop_at in current.resolve().parents:
        try:
            if await aiofiles.os.listdir(current):
                break
            await aiofiles.os.rmdir(current)
        except OSError:
            break
        removed += 1
        current = current.parent
    return removed
