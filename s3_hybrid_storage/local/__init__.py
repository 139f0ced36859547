"""
Local filesystem backend.

Provides the key-addressed LocalStore and the async file primitives it is
built on.
"""

from .store import LocalStore

__all__ = ["LocalStore"]
