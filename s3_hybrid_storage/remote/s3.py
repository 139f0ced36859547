"""
S3-compatible object store client.

Wraps an aioboto3 client with:
- Provider-aware endpoint and addressing style
- Bounded connect/read timeouts
- Paginated, lazy listings
- Translation of botocore errors into transient/permanent remote errors
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import AsyncIterator, Awaitable
from pathlib import Path
from typing import Any, TypeVar

import aioboto3
import aiofiles
import aiofiles.os
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    HTTPClientError,
    ReadTimeoutError,
)

from ..config import ObjectStoreConfig, resolve_endpoint
from ..exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    KeyNotFoundError,
    PermanentRemoteError,
    RemoteStorageError,
    TransientRemoteError,
)
from ..local.file_ops import TEMP_PREFIX
from .base import ObjectInfo, ObjectStoreClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Download chunk size for streaming objects to disk
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
TRANSIENT_CODES = frozenset(
    {
        "RequestTimeout",
        "RequestTimeoutException",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "InternalError",
        "ServiceUnavailable",
    }
)

_TRANSIENT_EXCEPTIONS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
    HTTPClientError,
    asyncio.TimeoutError,
    OSError,
)


def translate_error(exc: Exception, operation: str, key: str | None = None) -> RemoteStorageError:
    """Classify a botocore/network exception into the remote error taxonomy."""
    if isinstance(exc, RemoteStorageError):
        return exc

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        # Any other 404 code (NoSuchBucket) means the target itself is wrong, not the key
        if code in NOT_FOUND_CODES or (status == 404 and not code):
            return KeyNotFoundError(key or "", operation, exc)
        if code in TRANSIENT_CODES or (status is not None and status >= 500):
            return TransientRemoteError(operation, key, exc, status)
        return PermanentRemoteError(operation, key, exc, status)

    if isinstance(exc, _TRANSIENT_EXCEPTIONS):
        return TransientRemoteError(operation, key, exc)

    # Credentials, parameter validation and other client-side faults
    return PermanentRemoteError(operation, key, exc)


class S3ObjectStoreClient(ObjectStoreClient):
    """Object store client for AWS S3 and S3-compatible providers.

    The bucket is bound at construction. Call ``connect()`` (or use
    ``S3ObjectStoreClient.create()``) before performing operations.

    Example:
        >>> client = await S3ObjectStoreClient.create(config)
        >>> await client.put("journals/1/a.pdf", Path("a.pdf"), "application/pdf")
        >>> await client.close()
    """

    def __init__(
        self,
        config: ObjectStoreConfig,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        max_attempts: int = 1,
    ):
        """Initialize the client wrapper.

        Args:
            config: Object store configuration
            connect_timeout: Socket connect timeout (seconds)
            read_timeout: Socket read timeout (seconds)
            max_attempts: botocore-level attempts per call; retries are
                normally handled by the engine, so this defaults to 1
        """
        self.config = config
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_attempts = max_attempts
        self._session: Any = None
        self._client_cm: Any = None
        self._client: Any = None

    @classmethod
    async def create(cls, config: ObjectStoreConfig, **kwargs: Any) -> S3ObjectStoreClient:
        """Construct and connect a client in one step."""
        client = cls(config, **kwargs)
        await client.connect()
        return client

    @property
    def bucket(self) -> str:
        return self.config.bucket

    def _client_kwargs(self) -> dict[str, Any]:
        endpoint, path_style = resolve_endpoint(self.config)
        kwargs: dict[str, Any] = {
            "region_name": self.config.region or None,
            "config": Config(
                connect_timeout=self.connect_timeout,
                read_timeout=self.read_timeout,
                retries={"max_attempts": self.max_attempts, "mode": "standard"},
                signature_version="s3v4",
                s3={"addressing_style": "path" if path_style else "virtual"},
            ),
        }
        if endpoint:
            kwargs["endpoint_url"] = endpoint
        return kwargs

    async def connect(self) -> None:
        """Build the underlying aioboto3 client.

        Raises:
            ConfigurationError: If required options are missing
            BackendUnavailableError: If the client cannot be constructed
        """
        if self._client is not None:
            return

        self.config.validate()
        try:
            self._session = aioboto3.Session(
                aws_access_key_id=self.config.access_key,
                aws_secret_access_key=self.config.secret_key,
                region_name=self.config.region or None,
            )
            self._client_cm = self._session.client("s3", **self._client_kwargs())
            self._client = await self._client_cm.__aenter__()
        except ConfigurationError:
            raise
        except (BotoCoreError, ValueError) as e:
            self._client_cm = None
            raise BackendUnavailableError("s3", "failed to initialize S3 client", e) from e

        endpoint, path_style = resolve_endpoint(self.config)
        logger.info(
            f"S3 client initialized (provider={self.config.provider.value}, "
            f"bucket={self.bucket}, endpoint={endpoint or 'default'}, path_style={path_style})"
        )

    async def close(self) -> None:
        """Close the client. Safe to call multiple times."""
        if self._client_cm is not None:
            await self._client_cm.__aexit__(None, None, None)
        self._client_cm = None
        self._client = None

    async def __aenter__(self) -> S3ObjectStoreClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _require_client(self) -> Any:
        if self._client is None:
            raise BackendUnavailableError("s3", "client not connected")
        return self._client

    async def _run(self, operation: str, key: str | None, call: Awaitable[T]) -> T:
        try:
            return await call
        except (ClientError, BotoCoreError, asyncio.TimeoutError, OSError) as e:
            raise translate_error(e, operation, key) from e

    # =========================================================================
    # Object operations
    # =========================================================================

    async def put(self, key: str, source: Path | bytes, content_type: str) -> None:
        client = self._require_client()
        params = {"Bucket": self.bucket, "Key": key, "ContentType": content_type}
        if isinstance(source, bytes):
            await self._run("put", key, client.put_object(Body=source, **params))
            return

        try:
            fh = open(source, "rb")
        except OSError as e:
            raise PermanentRemoteError("put", key, e) from e
        with fh:
            await self._run("put", key, client.put_object(Body=fh, **params))

    async def get(self, key: str, dest_path: Path) -> None:
        client = self._require_client()
        response = await self._run("get", key, client.get_object(Bucket=self.bucket, Key=key))
        body = response["Body"]

        dest_path = Path(dest_path)
        await aiofiles.os.makedirs(dest_path.parent, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=dest_path.parent, prefix=TEMP_PREFIX)
        os.close(fd)
        try:
            async with aiofiles.open(temp_path, "wb") as f:
                while True:
                    chunk = await self._run("get", key, body.read(DOWNLOAD_CHUNK_SIZE))
                    if not chunk:
                        break
                    await f.write(chunk)
            await aiofiles.os.replace(temp_path, dest_path)
        except BaseException:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            raise
        finally:
            body.close()

    async def read(self, key: str) -> bytes:
        client = self._require_client()
        response = await self._run("read", key, client.get_object(Bucket=self.bucket, Key=key))
        body = response["Body"]
        try:
            return await self._run("read", key, body.read())
        finally:
            body.close()

    async def delete(self, key: str) -> None:
        client = self._require_client()
        try:
            await self._run("delete", key, client.delete_object(Bucket=self.bucket, Key=key))
        except KeyNotFoundError:
            # Already absent
            return

    async def head(self, key: str) -> int:
        client = self._require_client()
        response = await self._run("head", key, client.head_object(Bucket=self.bucket, Key=key))
        return int(response.get("ContentLength", 0))

    async def list(
        self, prefix: str = "", max_keys: int | None = None, delimiter: str | None = None
    ) -> AsyncIterator[ObjectInfo]:
        client = self._require_client()
        params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        if delimiter:
            # Nested keys come back as CommonPrefixes, which are not objects
            params["Delimiter"] = delimiter
        if max_keys is not None:
            params["PaginationConfig"] = {"MaxItems": max_keys, "PageSize": max_keys}

        paginator = client.get_paginator("list_objects_v2")
        count = 0
        try:
            async for page in paginator.paginate(**params):
                for obj in page.get("Contents", []):
                    yield ObjectInfo(key=obj["Key"], size=int(obj.get("Size", 0)))
                    count += 1
                    if max_keys is not None and count >= max_keys:
                        return
        except (ClientError, BotoCoreError, asyncio.TimeoutError, OSError) as e:
            raise translate_error(e, "list", prefix) from e

    async def presign(self, key: str, ttl: int) -> str:
        client = self._require_client()
        return await self._run(
            "presign",
            key,
            client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl,
            ),
        )

    async def copy(self, src_key: str, dst_key: str) -> None:
        client = self._require_client()
        await self._run(
            "copy",
            dst_key,
            client.copy_object(
                Bucket=self.bucket,
                Key=dst_key,
                CopySource={"Bucket": self.bucket, "Key": src_key},
            ),
        )
