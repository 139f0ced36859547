"""
S3 Hybrid Storage

Async file storage over an S3-compatible object store (AWS S3, Wasabi,
DigitalOcean Spaces, MinIO, ...) with an optional local filesystem mirror.

Provides:
- Cloud-only, hybrid (mirror every write) and fallback (local on failure) policies
- Presigned and public URLs in each provider's addressing convention
- Bulk sync, restore and orphan cleanup with a bounded worker pool
- Connection tests and storage statistics

Usage:

    >>> from s3_hybrid_storage import StorageContextConfig, open_storage_context
    >>> config = StorageContextConfig.from_yaml("storage.yaml")
    >>> async with await open_storage_context(config) as storage:
    ...     result = await storage.engine.upload(Path("paper.pdf"), "journals/1/paper.pdf")
    ...     target = await storage.engine.resolve_download("journals/1/paper.pdf")
    ...     report = await storage.reconciler.sync_to_remote(config.local_root)
"""

from .config import (
    ObjectStoreConfig,
    ProviderKind,
    StorageContextConfig,
    StorageMode,
    StoragePolicy,
    build_public_url,
    resolve_endpoint,
)
from .engine import HybridStorageEngine
from .exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    HybridStorageError,
    InvalidKeyError,
    KeyNotFoundError,
    LocalIOError,
    PermanentRemoteError,
    RemoteDiagnosticError,
    RemoteStorageError,
    TransientRemoteError,
)
from .factory import StorageContext, open_storage_context
from .health import HealthMonitor, HealthReport, format_bytes
from .local import LocalStore
from .maintenance import MaintenanceOptions, MaintenanceReport, run_maintenance
from .reconcile import ReconciliationEngine
from .remote import ObjectInfo, ObjectStoreClient, RetryConfig
from .remote.s3 import S3ObjectStoreClient
from .types import (
    BackendOutcome,
    CleanupReport,
    ConnectionCheck,
    DownloadTarget,
    OperationResult,
    PresignedAccess,
    StorageStats,
    SyncReport,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "ObjectStoreConfig",
    "ProviderKind",
    "StorageContextConfig",
    "StorageMode",
    "StoragePolicy",
    "build_public_url",
    "resolve_endpoint",
    # Engines
    "HybridStorageEngine",
    "ReconciliationEngine",
    "HealthMonitor",
    "HealthReport",
    "format_bytes",
    "StorageContext",
    "open_storage_context",
    "MaintenanceOptions",
    "MaintenanceReport",
    "run_maintenance",
    # Backends
    "LocalStore",
    "ObjectInfo",
    "ObjectStoreClient",
    "RetryConfig",
    "S3ObjectStoreClient",
    # Results
    "BackendOutcome",
    "CleanupReport",
    "ConnectionCheck",
    "DownloadTarget",
    "OperationResult",
    "PresignedAccess",
    "StorageStats",
    "SyncReport",
    # Exceptions
    "HybridStorageError",
    "ConfigurationError",
    "InvalidKeyError",
    "BackendUnavailableError",
    "RemoteStorageError",
    "TransientRemoteError",
    "PermanentRemoteError",
    "KeyNotFoundError",
    "LocalIOError",
    "RemoteDiagnosticError",
]
