"""
Remote object store backends.

ObjectStoreClient is the contract every backend implements; the aioboto3
implementation lives in ``s3_hybrid_storage.remote.s3``.
"""

from .base import ObjectInfo, ObjectStoreClient
from .resilience import RetryConfig, retry_with_backoff, with_timeout

__all__ = [
    "ObjectInfo",
    "ObjectStoreClient",
    "RetryConfig",
    "retry_with_backoff",
    "with_timeout",
]
