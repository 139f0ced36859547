"""Storage key helpers.

Keys are slash-separated relative paths shared by both backends. These
helpers centralize the key format so callers never build keys by hand.

    journals/12/articles/4/file.pdf
"""

from __future__ import annotations

import os

from .exceptions import InvalidKeyError


def normalize_key(key: str) -> str:
    """Normalize a key to forward slashes without a leading slash.

    Raises InvalidKeyError for empty keys or keys with ``..`` segments.
    """
    parts = [p for p in key.replace("\\", "/").split("/") if p not in ("", ".")]
    if not parts:
        raise InvalidKeyError(key, "key is empty")
    if ".." in parts:
        raise InvalidKeyError(key, "parent directory segments are not allowed")
    return "/".join(parts)


def normalize_prefix(prefix: str | None) -> str:
    """Normalize a listing prefix: ``""`` or a path ending in a single ``/``."""
    if not prefix:
        return ""
    stripped = prefix.replace("\\", "/").strip("/")
    if not stripped:
        return ""
    return normalize_key(stripped) + "/"


def join_key(prefix: str | None, relative: str) -> str:
    """Join a prefix and a relative path into a key."""
    return normalize_key(normalize_prefix(prefix) + relative.replace(os.sep, "/"))


def relative_key(key: str, prefix: str | None) -> str:
    """Strip a listing prefix from a key.

    Returns the key unchanged when it does not start with the prefix.
    """
    prefix = normalize_prefix(prefix)
    if prefix and key.startswith(prefix):
        return key[len(prefix) :]
    return key


def is_directory_marker(key: str) -> bool:
    """Zero-byte objects with a trailing slash simulate directories."""
    return key.endswith("/")
