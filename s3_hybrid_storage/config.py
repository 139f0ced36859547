"""
Storage configuration.

One StorageContextConfig describes one logical storage context (a tenant,
a journal, ...): which object store to use, where the local mirror lives,
and the policy that decides how the two backends are combined.

Configuration can be provided directly, via environment variables, or from
a YAML file:

```yaml
storage:
  context_id: "journal-12"
  local_root: "/var/lib/files/journals/12"
  hybrid_mode: false
  fallback_enabled: true
  object_store:
    provider: digitalocean
    bucket: my-bucket
    region: nyc3
    access_key: "..."
    secret_key: "..."
```

Provider selection only changes which object store options are defaulted
or required; see resolve_endpoint() and build_public_url().
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError
from .keys import normalize_key
from .remote.resilience import RetryConfig

DEFAULT_REGION = "us-east-1"
DEFAULT_TIMEOUT = 30.0  # seconds per remote call
DEFAULT_PRESIGN_TTL = 3600  # seconds
DEFAULT_MAX_CONCURRENCY = 4

# Characters stripped from pasted credentials
_CREDENTIAL_TRIM = "\"';"


def _trim(value: str | None) -> str:
    return (value or "").strip().strip(_CREDENTIAL_TRIM).strip()


_TRUE_FLAGS = frozenset({"true", "yes", "on", "1"})
_FALSE_FLAGS = frozenset({"false", "no", "off", "0"})


def parse_flag(name: str, value: Any, default: bool) -> bool:
    """Read a boolean setting from YAML or an environment variable.

    Quoted strings are parsed, so ``"false"`` is False. Missing or empty
    values give ``default``.

    Raises:
        ConfigurationError: If the value is not recognizable as a boolean
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if not text:
        return default
    if text in _TRUE_FLAGS:
        return True
    if text in _FALSE_FLAGS:
        return False
    raise ConfigurationError(name, f"expected true or false, got {value!r}")


class ProviderKind(Enum):
    """S3-compatible object store providers.

    AWS: Amazon S3, virtual-hosted addressing
    WASABI: Wasabi, path-style addressing on s3.{region}.wasabisys.com
    DIGITALOCEAN: DigitalOcean Spaces, path-style on {region}.digitaloceanspaces.com
    CUSTOM: Any S3-compatible endpoint (MinIO, Ceph, ...), path-style
    """

    AWS = "aws"
    WASABI = "wasabi"
    DIGITALOCEAN = "digitalocean"
    CUSTOM = "custom"


class StorageMode(Enum):
    """How the two backends are combined."""

    CLOUD_ONLY = "cloud_only"  # Remote is authoritative, local never touched
    HYBRID = "hybrid"  # Every write/delete mirrored to both backends
    FALLBACK = "fallback"  # Local used only after remote failed


@dataclass(frozen=True)
class StoragePolicy:
    """Immutable policy governing one engine for its lifetime.

    Attributes:
        hybrid_mode: Attempt every write/delete on both backends
        fallback_enabled: Use local storage when the remote fails
    """

    hybrid_mode: bool = False
    fallback_enabled: bool = True

    @property
    def local_permitted(self) -> bool:
        """Whether this policy ever lets the local backend count."""
        return self.hybrid_mode or self.fallback_enabled

    @property
    def mode(self) -> StorageMode:
        if self.hybrid_mode:
            return StorageMode.HYBRID
        if self.fallback_enabled:
            return StorageMode.FALLBACK
        return StorageMode.CLOUD_ONLY


@dataclass
class ObjectStoreConfig:
    """Connection settings for an S3-compatible object store.

    Attributes:
        bucket: Bucket name
        access_key: Access key ID
        secret_key: Secret access key
        region: Region (optional for CUSTOM, defaults to us-east-1)
        provider: Provider kind
        endpoint_override: Custom endpoint URL
        path_style_addressing: Force path-style (None = provider default)
    """

    bucket: str
    access_key: str
    secret_key: str
    region: str = ""
    provider: ProviderKind = ProviderKind.AWS
    endpoint_override: str = ""
    path_style_addressing: bool | None = None

    def __post_init__(self) -> None:
        if isinstance(self.provider, str):
            try:
                self.provider = ProviderKind(self.provider.lower() or "aws")
            except ValueError:
                raise ConfigurationError("provider", f"unknown provider {self.provider!r}") from None
        self.bucket = _trim(self.bucket)
        self.access_key = _trim(self.access_key)
        self.secret_key = _trim(self.secret_key)
        self.endpoint_override = _trim(self.endpoint_override)
        self.region = (self.region or "").strip()
        if self.provider == ProviderKind.CUSTOM and not self.region:
            self.region = DEFAULT_REGION

    def validate(self) -> None:
        """Check required options for the selected provider.

        Raises:
            ConfigurationError: If a required option is missing
        """
        if not self.bucket:
            raise ConfigurationError("bucket", "bucket is required")
        if not self.access_key:
            raise ConfigurationError("access_key", "access key is required")
        if not self.secret_key:
            raise ConfigurationError("secret_key", "secret key is required")
        if self.provider != ProviderKind.CUSTOM and not self.region:
            raise ConfigurationError(
                "region", f"region is required for provider {self.provider.value!r}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObjectStoreConfig:
        path_style = data.get("path_style_addressing")
        if path_style is not None:
            path_style = parse_flag("path_style_addressing", path_style, False)
        return cls(
            bucket=data.get("bucket", ""),
            access_key=data.get("access_key", ""),
            secret_key=data.get("secret_key", ""),
            region=data.get("region", ""),
            provider=data.get("provider", "aws"),
            endpoint_override=data.get("endpoint_override", ""),
            path_style_addressing=path_style,
        )


def resolve_endpoint(config: ObjectStoreConfig) -> tuple[str | None, bool]:
    """Map provider settings to (endpoint_url, path_style).

    Pure function: never touches the network.
    """
    endpoint: str | None
    if config.provider == ProviderKind.WASABI:
        endpoint = config.endpoint_override or f"https://s3.{config.region}.wasabisys.com"
        path_style = True
    elif config.provider == ProviderKind.DIGITALOCEAN:
        endpoint = config.endpoint_override or f"https://{config.region}.digitaloceanspaces.com"
        path_style = True
    elif config.provider == ProviderKind.CUSTOM:
        endpoint = config.endpoint_override or None
        path_style = bool(config.endpoint_override)
    else:
        endpoint = config.endpoint_override or None
        path_style = False

    if config.path_style_addressing is not None:
        path_style = config.path_style_addressing
    return endpoint, path_style


def build_public_url(config: ObjectStoreConfig, key: str) -> str:
    """Static public URL for a key, in the provider's addressing convention.

    These URLs are persisted by callers, so their shape must not change.
    """
    key = normalize_key(key)
    bucket = config.bucket
    region = config.region
    if config.provider == ProviderKind.WASABI:
        return f"https://s3.{region}.wasabisys.com/{bucket}/{key}"
    if config.provider == ProviderKind.DIGITALOCEAN:
        return f"https://{bucket}.{region}.digitaloceanspaces.com/{key}"
    if config.provider == ProviderKind.CUSTOM and config.endpoint_override:
        endpoint = config.endpoint_override.rstrip("/")
        return f"{endpoint}/{bucket}/{key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


@dataclass
class StorageContextConfig:
    """Configuration for one logical storage context.

    Environment Variables:
        S3_HYBRID_CONTEXT_ID: Context identifier used in logs
        S3_HYBRID_LOCAL_ROOT: Local mirror root directory
        S3_HYBRID_BUCKET / S3_HYBRID_ACCESS_KEY / S3_HYBRID_SECRET_KEY
        S3_HYBRID_REGION: Region
        S3_HYBRID_PROVIDER: aws, wasabi, digitalocean or custom (default: aws)
        S3_HYBRID_ENDPOINT: Custom endpoint URL
        S3_HYBRID_PATH_STYLE: "true"/"false" to force addressing style
        S3_HYBRID_HYBRID_MODE: "true" to mirror writes to both backends
        S3_HYBRID_FALLBACK: "false" to disable local fallback (default: true)
        S3_HYBRID_TIMEOUT: Per-call remote timeout in seconds

    Attributes:
        local_root: Root directory of the local backend
        object_store: Object store settings (None = local-only)
        policy: Hybrid/fallback policy
        context_id: Identifier of the context, used in logs
        timeout: Per-call remote timeout (seconds)
        max_retries: Retries for transient remote failures
        retry_backoff: Base backoff between retries (seconds)
        max_concurrency: Worker pool size for bulk operations
        presign_ttl: Default lifetime of presigned URLs (seconds)
    """

    local_root: Path
    object_store: ObjectStoreConfig | None = None
    policy: StoragePolicy = field(default_factory=StoragePolicy)
    context_id: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = 2
    retry_backoff: float = 0.5
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    presign_ttl: int = DEFAULT_PRESIGN_TTL

    def __post_init__(self) -> None:
        self.local_root = Path(self.local_root)
        if self.timeout <= 0:
            raise ConfigurationError("timeout", "timeout must be positive")
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency", "must be at least 1")

    def retry_config(self) -> RetryConfig:
        return RetryConfig(max_retries=self.max_retries, backoff_base=self.retry_backoff)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageContextConfig:
        """Build configuration from a plain mapping (e.g. parsed YAML)."""
        if not data.get("local_root"):
            raise ConfigurationError("local_root", "local_root is required")
        store_data = data.get("object_store")
        return cls(
            local_root=Path(data["local_root"]).expanduser(),
            object_store=ObjectStoreConfig.from_dict(store_data) if store_data else None,
            policy=StoragePolicy(
                hybrid_mode=parse_flag("hybrid_mode", data.get("hybrid_mode"), False),
                fallback_enabled=parse_flag("fallback_enabled", data.get("fallback_enabled"), True),
            ),
            context_id=data.get("context_id"),
            timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
            max_retries=int(data.get("max_retries", 2)),
            retry_backoff=float(data.get("retry_backoff", 0.5)),
            max_concurrency=int(data.get("max_concurrency", DEFAULT_MAX_CONCURRENCY)),
            presign_ttl=int(data.get("presign_ttl", DEFAULT_PRESIGN_TTL)),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> StorageContextConfig:
        """Load configuration from the ``storage`` section of a YAML file.

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        try:
            content = Path(path).read_text()
            data = yaml.safe_load(content) or {}
        except OSError as e:
            raise ConfigurationError("config_path", f"cannot read {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError("config_path", f"invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("config_path", f"{path} must contain a mapping")
        return cls.from_dict(data.get("storage", data))

    @classmethod
    def from_environment(cls) -> StorageContextConfig:
        """Create configuration from environment variables."""
        env = os.environ
        object_store = None
        if env.get("S3_HYBRID_BUCKET"):
            path_style = env.get("S3_HYBRID_PATH_STYLE") or None
            if path_style is not None:
                path_style = parse_flag("S3_HYBRID_PATH_STYLE", path_style, False)
            object_store = ObjectStoreConfig(
                bucket=env.get("S3_HYBRID_BUCKET", ""),
                access_key=env.get("S3_HYBRID_ACCESS_KEY", ""),
                secret_key=env.get("S3_HYBRID_SECRET_KEY", ""),
                region=env.get("S3_HYBRID_REGION", ""),
                provider=env.get("S3_HYBRID_PROVIDER", "aws"),
                endpoint_override=env.get("S3_HYBRID_ENDPOINT", ""),
                path_style_addressing=path_style,
            )

        return cls(
            local_root=Path(env.get("S3_HYBRID_LOCAL_ROOT", "files")).expanduser(),
            object_store=object_store,
            policy=StoragePolicy(
                hybrid_mode=parse_flag("S3_HYBRID_HYBRID_MODE", env.get("S3_HYBRID_HYBRID_MODE"), False),
                fallback_enabled=parse_flag("S3_HYBRID_FALLBACK", env.get("S3_HYBRID_FALLBACK"), True),
            ),
            context_id=env.get("S3_HYBRID_CONTEXT_ID"),
            timeout=float(env.get("S3_HYBRID_TIMEOUT", DEFAULT_TIMEOUT)),
        )
