"""Command line interface for a storage context.

Usage:
    python -m s3_hybrid_storage --config storage.yaml test-connection
    python -m s3_hybrid_storage --config storage.yaml stats
    python -m s3_hybrid_storage --config storage.yaml sync --prefix journals/12
    python -m s3_hybrid_storage --config storage.yaml restore --prefix journals/12
    python -m s3_hybrid_storage --config storage.yaml cleanup --valid-keys keys.txt --prefix journals/12
    python -m s3_hybrid_storage --config storage.yaml url journals/12/a.pdf --ttl 600

Without --config, settings are read from S3_HYBRID_* environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .config import StorageContextConfig
from .exceptions import HybridStorageError
from .factory import StorageContext, open_storage_context
from .health import format_bytes
from .logging_utils import configure_structured_logging
from .maintenance import MaintenanceOptions, run_maintenance


def read_valid_keys(path: Path) -> list[str]:
    """One key per line; blank lines and ``#`` comments are ignored."""
    keys = []
    for line in Path(path).read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            keys.append(line)
    return keys


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _test_connection(storage: StorageContext, args: argparse.Namespace) -> int:
    check = await storage.health.test_connection()
    if check.ok:
        print("Connection OK")
        return 0
    print(f"Connection failed: {check.diagnostic}", file=sys.stderr)
    return 1


async def _stats(storage: StorageContext, args: argparse.Namespace) -> int:
    stats = await storage.health.get_storage_stats()
    if args.json:
        _print_json(stats.to_dict())
    else:
        print(f"Provider : {stats.provider or 'none'}")
        print(f"Cloud    : {stats.remote_count} files, {format_bytes(stats.remote_size)}")
        print(f"Local    : {stats.local_count} files, {format_bytes(stats.local_size)}")
        print(f"Hybrid   : {stats.hybrid_mode}")
        print(f"Fallback : {stats.fallback_enabled}")
        if stats.error:
            print(f"Error    : {stats.error}", file=sys.stderr)
    return 1 if stats.error else 0


async def _sync(storage: StorageContext, args: argparse.Namespace) -> int:
    report = await storage.reconciler.sync_to_remote(
        args.local_root or storage.config.local_root,
        args.prefix,
        delete_local_after=args.delete_local,
    )
    _print_json(report.to_dict())
    return 0 if report.success else 1


async def _restore(storage: StorageContext, args: argparse.Namespace) -> int:
    report = await storage.reconciler.sync_from_remote(
        args.local_root or storage.config.local_root,
        args.prefix,
    )
    _print_json(report.to_dict())
    return 0 if report.success else 1


async def _cleanup(storage: StorageContext, args: argparse.Namespace) -> int:
    valid_keys = read_valid_keys(args.valid_keys)
    report = await storage.reconciler.cleanup_orphans(valid_keys, args.prefix)
    _print_json(report.to_dict())
    return 0 if not report.errors else 1


async def _url(storage: StorageContext, args: argparse.Namespace) -> int:
    if args.public:
        print(storage.engine.get_public_url(args.key))
        return 0
    access = await storage.engine.get_temporary_url(args.key, args.ttl)
    if access is None:
        print(f"Could not generate a temporary URL for {args.key}", file=sys.stderr)
        return 1
    print(access.url)
    return 0


async def _maintain(storage: StorageContext, args: argparse.Namespace) -> int:
    options = MaintenanceOptions(
        sync=args.sync,
        delete_local_after_sync=args.delete_local,
        remote_prefix=args.prefix,
        cleanup_orphans=args.valid_keys is not None,
        cleanup_prefix=args.prefix,
    )
    valid_keys = read_valid_keys(args.valid_keys) if args.valid_keys else None
    report = await run_maintenance(storage, valid_keys=valid_keys, options=options)
    _print_json(report.to_dict())
    return 0 if report.success else 1


COMMANDS = {
    "test-connection": _test_connection,
    "stats": _stats,
    "sync": _sync,
    "restore": _restore,
    "cleanup": _cleanup,
    "url": _url,
    "maintain": _maintain,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="s3_hybrid_storage",
        description="Hybrid local + S3-compatible object storage",
        epilog="Without --config, settings are read from S3_HYBRID_* environment variables.",
    )
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("test-connection", help="Probe the object store")

    stats = sub.add_parser("stats", help="Show object counts and sizes")
    stats.add_argument("--json", action="store_true", help="Print stats as JSON")

    sync = sub.add_parser("sync", help="Upload the local tree to the object store")
    sync.add_argument("--prefix", default="", help="Key prefix for uploaded files")
    sync.add_argument("--local-root", type=Path, help="Directory to upload (default: configured root)")
    sync.add_argument("--delete-local", action="store_true", help="Remove local files once uploaded")

    restore = sub.add_parser("restore", help="Download the object store into the local tree")
    restore.add_argument("--prefix", default="", help="Key prefix to restore")
    restore.add_argument("--local-root", type=Path, help="Target directory (default: configured root)")

    cleanup = sub.add_parser("cleanup", help="Delete remote objects not listed as valid")
    cleanup.add_argument("--valid-keys", type=Path, required=True, help="File with one valid key per line")
    cleanup.add_argument("--prefix", default="", help="Only scan keys under this prefix")

    url = sub.add_parser("url", help="Print a temporary (or public) URL for a key")
    url.add_argument("key")
    url.add_argument("--ttl", type=int, default=None, help="URL lifetime in seconds")
    url.add_argument("--public", action="store_true", help="Print the static public URL instead")

    maintain = sub.add_parser("maintain", help="Run one maintenance pass")
    maintain.add_argument("--sync", action="store_true", help="Sync the local tree first")
    maintain.add_argument("--delete-local", action="store_true", help="Remove local files once synced")
    maintain.add_argument("--valid-keys", type=Path, help="Clean up orphans not listed in this file")
    maintain.add_argument("--prefix", default="", help="Key prefix for sync and cleanup")

    return parser


async def run(args: argparse.Namespace) -> int:
    if args.config:
        config = StorageContextConfig.from_yaml(args.config)
    else:
        config = StorageContextConfig.from_environment()
    async with await open_storage_context(config) as storage:
        return await COMMANDS[args.command](storage, args)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    if args.json_logs:
        configure_structured_logging(level)
    else:
        logging.basicConfig(level=level, format="%(levelname)s  %(name)s  %(message)s")

    try:
        return asyncio.run(run(args))
    except HybridStorageError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
