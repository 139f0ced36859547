"""
Abstract object store interface.

Defines the contract the hybrid engine consumes. The bucket is bound when
the client is constructed, so operations take keys only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ObjectInfo:
    """A single entry from an object listing."""

    key: str
    size: int


class ObjectStoreClient(ABC):
    """Capability interface over a remote object store.

    Implementations raise the remote error taxonomy:
    - TransientRemoteError for network/timeout/5xx failures
    - PermanentRemoteError for 4xx failures
    - KeyNotFoundError when the key does not exist
    """

    @abstractmethod
    async def put(self, key: str, source: Path | bytes, content_type: str) -> None:
        """Store a file or bytes under a key.

        Args:
            key: Destination key
            source: Local file path (streamed) or raw bytes
            content_type: MIME type of the content
        """
        ...

    @abstractmethod
    async def get(self, key: str, dest_path: Path) -> None:
        """Stream an object into a local file.

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        ...

    @abstractmethod
    async def read(self, key: str) -> bytes:
        """Return the whole content of an object.

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""
        ...

    @abstractmethod
    async def head(self, key: str) -> int:
        """Return the size of an object in bytes.

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        ...

    @abstractmethod
    def list(
        self, prefix: str = "", max_keys: int | None = None, delimiter: str | None = None
    ) -> AsyncIterator[ObjectInfo]:
        """Lazily iterate over objects under a prefix, page by page.

        Args:
            prefix: Key prefix to list
            max_keys: Stop after this many entries (None = exhaustive)
            delimiter: When set, only objects directly under ``prefix`` are
                listed; deeper keys are grouped by the store and skipped
        """
        ...

    @abstractmethod
    async def presign(self, key: str, ttl: int) -> str:
        """Generate a time-limited GET URL for a key."""
        ...

    @abstractmethod
    async def copy(self, src_key: str, dst_key: str) -> None:
        """Server-side copy of an object within the bucket."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release client resources."""
        ...
