"""
Storage context factory.

Wires one StorageContextConfig into a ready-to-use engine, reconciler and
health monitor sharing a single object store client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .config import StorageContextConfig
from .engine import HybridStorageEngine
from .exceptions import BackendUnavailableError, ConfigurationError
from .health import HealthMonitor
from .local import LocalStore
from .reconcile import ReconciliationEngine
from .remote import ObjectStoreClient
from .remote.s3 import S3ObjectStoreClient

logger = logging.getLogger(__name__)


@dataclass
class StorageContext:
    """Engine, reconciler and health monitor for one storage context.

    Use as an async context manager to close the object store client:

        >>> async with await open_storage_context(config) as storage:
        ...     await storage.engine.upload(path, "journals/1/a.pdf")
    """

    config: StorageContextConfig
    engine: HybridStorageEngine
    reconciler: ReconciliationEngine
    health: HealthMonitor

    @classmethod
    async def create(
        cls,
        config: StorageContextConfig,
        remote: ObjectStoreClient | None = None,
    ) -> StorageContext:
        """Create a context, connecting to the object store if configured.

        A client that cannot be constructed is tolerated when the policy
        permits local storage; the context then runs local-only.

        Args:
            config: Context configuration
            remote: Pre-built client (skips S3 client construction)

        Raises:
            BackendUnavailableError: If no object store is usable and the
                policy does not permit local storage
        """
        if remote is None and config.object_store is not None:
            try:
                remote = await S3ObjectStoreClient.create(config.object_store, read_timeout=config.timeout)
            except (ConfigurationError, BackendUnavailableError) as e:
                if not config.policy.local_permitted:
                    raise BackendUnavailableError("s3", "failed to initialize object store client", e) from e
                logger.warning(
                    f"Object store unavailable for context {config.context_id or '-'}, "
                    f"continuing with local storage: {e.message}"
                )
                remote = None

        engine = HybridStorageEngine(
            remote,
            LocalStore(config.local_root),
            config.policy,
            object_store=config.object_store,
            timeout=config.timeout,
            retry=config.retry_config(),
            presign_ttl=config.presign_ttl,
            context_id=config.context_id,
        )
        return cls(
            config=config,
            engine=engine,
            reconciler=ReconciliationEngine(engine, max_concurrency=config.max_concurrency),
            health=HealthMonitor(engine),
        )

    async def close(self) -> None:
        await self.engine.close()

    async def __aenter__(self) -> StorageContext:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


async def open_storage_context(
    config: StorageContextConfig | None = None,
    remote: ObjectStoreClient | None = None,
) -> StorageContext:
    """Open a storage context (configuration from the environment if None)."""
    if config is None:
        config = StorageContextConfig.from_environment()
    return await StorageContext.create(config, remote)
