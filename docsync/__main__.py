"""CLI entry point for docsync."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import DocSyncError
from .store import SQLiteDocumentStore
from .sync import HttpTransport, Replicator


LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class JSONFormatter(logging.Formatter):
    """Render each log record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    verbose: bool = False, log_level: str | None = None, json_output: bool = False
) -> None:
    """Send docsync logs to stderr.

    An explicit ``log_level`` wins over ``verbose``. Per-request httpx logs
    are only shown when debugging.
    """
    if log_level:
        level = LOG_LEVELS[log_level]
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _open_store(config: Config) -> SQLiteDocumentStore:
    store = SQLiteDocumentStore(config.store.db_path, config.store.primary_path)
    store.connect()
    return store


def _build_replicator(config: Config, store: SQLiteDocumentStore) -> Replicator:
    repl = config.replication
    transport = HttpTransport(
        repl.endpoint,
        max_retries=repl.retry_max_attempts,
        timeout=repl.timeout_seconds,
    )
    return Replicator(
        store,
        transport,
        repl.endpoint,
        namespace=repl.namespace,
        last_pulled_revision_field=repl.last_pulled_revision_field,
        batch_size=repl.batch_size,
        sync_revisions=repl.sync_revisions,
        deleted_field=repl.deleted_field,
        push=repl.push,
        pull=repl.pull,
    )


def _require_endpoint(config: Config) -> bool:
    if not config.replication.endpoint:
        print(
            "No endpoint configured (set replication.endpoint or DOCSYNC_ENDPOINT)",
            file=sys.stderr,
        )
        return False
    return True


async def cmd_status(args: argparse.Namespace) -> int:
    """Show store and checkpoint status."""
    config = load_config(args.config)
    store = _open_store(config)

    try:
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "store": {"db_path": config.store.db_path, **store.get_stats()},
            "replication": None,
        }

        if config.replication.endpoint:
            replicator = _build_replicator(config, store)
            push_checkpoint = await replicator.push_checkpoints.get_checkpoint(
                replicator.endpoint_hash
            )
            pull_checkpoint = await replicator.pull_checkpoints.get_checkpoint(
                replicator.endpoint_hash
            )
            status_data["replication"] = {
                "endpoint": replicator.endpoint,
                "endpoint_hash": replicator.endpoint_hash,
                "namespace": config.replication.namespace,
                "push_sequence": push_checkpoint.sequence if push_checkpoint else 0,
                "push_revision": push_checkpoint.revision if push_checkpoint else None,
                "pull_checkpoint": bool(
                    pull_checkpoint and pull_checkpoint.last_document is not None
                ),
            }
    finally:
        store.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    store_status = status_data["store"]
    print("docsync Status")
    print("==============")
    print(f"Store ({store_status['db_path']}):")
    print(f"  Documents: {store_status['documents']}")
    print(f"  Deleted: {store_status['deleted_documents']}")
    print(f"  Local records: {store_status['local_records']}")
    print(f"  Update sequence: {store_status['update_seq']}")
    print()

    repl_status = status_data["replication"]
    if repl_status is None:
        print("Replication: no endpoint configured")
    else:
        print(f"Replication ({repl_status['endpoint']}):")
        print(f"  Endpoint hash: {repl_status['endpoint_hash'][:16]}")
        print(f"  Push sequence: {repl_status['push_sequence']}")
        pulled = "yes" if repl_status["pull_checkpoint"] else "never pulled"
        print(f"  Pull checkpoint: {pulled}")

    return 0


async def cmd_pending(args: argparse.Namespace) -> int:
    """Preview the next push batch without committing it."""
    config = load_config(args.config)
    if not _require_endpoint(config):
        return 1

    store = _open_store(config)
    try:
        replicator = _build_replicator(config, store)
        batch = await replicator.selector.get_changes_since_last_push_sequence(
            replicator.endpoint_hash,
            config.replication.last_pulled_revision_field,
            batch_size=config.replication.batch_size,
            sync_revisions=config.replication.sync_revisions,
        )
    except DocSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()

    if args.json:
        print(json.dumps(batch.to_dict(), indent=2))
        return 0

    print(f"{len(batch.results)} pending change(s), scan ends at {batch.last_sequence}")
    for change in batch.results:
        marker = " (deleted)" if change.deleted else ""
        print(f"  - {change.id} rev={change.revision}{marker}")
    return 0


async def cmd_checkpoint_reset(args: argparse.Namespace) -> int:
    """Rewind push and/or pull checkpoints."""
    config = load_config(args.config)
    if not _require_endpoint(config):
        return 1

    # Neither flag means both directions
    reset_push = args.push or not args.pull
    reset_pull = args.pull or not args.push

    store = _open_store(config)
    try:
        replicator = _build_replicator(config, store)
        if reset_push:
            await replicator.push_checkpoints.set_last_push_sequence(
                replicator.endpoint_hash, 0
            )
            print("Push checkpoint reset")
        if reset_pull:
            await replicator.pull_checkpoints.set_last_pull_document(
                replicator.endpoint_hash, None
            )
            print("Pull checkpoint reset")
    except DocSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run a sync round, or keep syncing."""
    config = load_config(args.config)
    if not _require_endpoint(config):
        return 1

    store = _open_store(config)
    try:
        replicator = _build_replicator(config, store)
        if args.loop:
            await replicator.sync_loop(config.replication.sync_interval_seconds)
            return 0

        result = await replicator.run()
    finally:
        store.close()

    print(
        f"Sync {result.status.value}: pushed={result.entries_pushed}, "
        f"pulled={result.entries_pulled}"
    )
    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="docsync",
        description="Resumable replication of a local document store",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show store and checkpoint status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Pending command
    pending_parser = subparsers.add_parser("pending", help="Preview the next push batch")
    pending_parser.add_argument(
        "--json",
        action="store_true",
        help="Output batch as JSON",
    )
    pending_parser.set_defaults(func=cmd_pending)

    # Checkpoint commands
    checkpoint_parser = subparsers.add_parser("checkpoint", help="Manage checkpoints")
    checkpoint_subparsers = checkpoint_parser.add_subparsers(
        dest="checkpoint_command", help="Checkpoint commands"
    )

    # checkpoint reset
    checkpoint_reset = checkpoint_subparsers.add_parser("reset", help="Rewind checkpoints")
    checkpoint_reset.add_argument("--push", action="store_true", help="Reset the push checkpoint")
    checkpoint_reset.add_argument("--pull", action="store_true", help="Reset the pull checkpoint")
    checkpoint_reset.set_defaults(func=cmd_checkpoint_reset)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Run a pull and push round")
    sync_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep syncing at the configured interval",
    )
    sync_parser.set_defaults(func=cmd_sync)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    # Handle checkpoint subcommand requiring its own subcommand
    if args.command == "checkpoint" and not args.checkpoint_command:
        checkpoint_parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except DocSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
