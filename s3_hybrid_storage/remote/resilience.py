"""Resilience utilities for object store calls.

Every remote call is bounded by a timeout and retried with exponential
backoff when it fails transiently. A timed-out call is reported as a
TransientRemoteError, so callers treat it exactly like any other failed
remote call.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ..exceptions import RemoteStorageError, TransientRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff."""

    max_retries: int = 2
    backoff_base: float = 0.5  # seconds
    backoff_max: float = 10.0  # cap
    backoff_multiplier: float = 2.0


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str, key: str | None = None) -> T:
    """Await with a deadline, converting a timeout into TransientRemoteError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TransientRemoteError(operation, key, TimeoutError(f"timed out after {timeout}s")) from e


async def retry_with_backoff(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    context_msg: str = "",
    **kwargs: Any,
) -> T:
    """Execute an async callable, retrying transient remote failures.

    Only errors whose ``retryable`` flag is set are retried; permanent
    errors (forbidden, not found, bad request) are raised immediately.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        config: Retry configuration (uses defaults if None)
        context_msg: Extra context for log messages (e.g. the key)
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        RemoteStorageError: Last error after all retries are exhausted
    """
    cfg = config or RetryConfig()
    ctx = f" [{context_msg}]" if context_msg else ""

    for attempt in range(cfg.max_retries + 1):
        try:
            result = await fn(*args, **kwargs)
        except RemoteStorageError as exc:
            if not exc.retryable or attempt >= cfg.max_retries:
                if exc.retryable:
                    logger.warning(
                        "RETRY_EXHAUSTED: attempt=%d/%d%s: %s",
                        attempt + 1,
                        cfg.max_retries + 1,
                        ctx,
                        exc,
                    )
                raise

            delay = min(cfg.backoff_base * (cfg.backoff_multiplier**attempt), cfg.backoff_max)
            logger.warning(
                "RETRYING: attempt=%d/%d delay=%.1fs%s: %s",
                attempt + 1,
                cfg.max_retries + 1,
                delay,
                ctx,
                exc,
            )
            await asyncio.sleep(delay)
        else:
            if attempt > 0:
                logger.info(
                    "RETRY_RECOVERED: succeeded on attempt %d/%d%s",
                    attempt + 1,
                    cfg.max_retries + 1,
                    ctx,
                )
            return result

    # Unreachable, but satisfies type checker
    raise RuntimeError("retry_with_backoff exhausted without raising")  # pragma: no cover
