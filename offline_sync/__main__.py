# __main__.py
# Description: Command-line maintenance entry point for the offline queue and cached snapshots.
#
# Imports
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .Constants import CACHE_KEY_PREFIX, DEFAULT_ID_FIELD, OFFLINE_QUEUE_KEY
from .config import get_kv_store_path, load_settings
from .DB.KV_Store_DB import DatabaseError, KeyValueDatabase
from .Logging_Config import configure_logging
from .Sync.mutation_queue import MutationQueue
from .Sync.sync_engine import SyncEngine
#
#######################################################################################################################
#
# Functions:

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="offline-sync", description="Inspect and replay offline changes")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    parser.add_argument("--no-log-file", action="store_true", help="Log to stderr only")
    subparsers = parser.add_subparsers(dest="command", required=True)

    queue_parser = subparsers.add_parser("queue", help="List pending offline mutations")
    queue_parser.add_argument("--resource", default=None, help="Only show mutations for this resource")

    subparsers.add_parser("drain", help="Replay pending mutations against the configured backend once")

    discard_parser = subparsers.add_parser("discard", help="Drop one pending mutation")
    discard_parser.add_argument("mutation_id")

    clear_parser = subparsers.add_parser("clear-cache", help="Delete the cached snapshot of a resource")
    clear_parser.add_argument("resource")
    return parser


def _open_queue(settings, kv_store: KeyValueDatabase) -> MutationQueue:
    sync_section = settings.get("sync", {})
    # Listing and discarding never reach the backend.
    return MutationQueue(kv_store, backend=None,
                         storage_key=sync_section.get("offline_queue_key", OFFLINE_QUEUE_KEY),
                         id_field=sync_section.get("id_field", DEFAULT_ID_FIELD))


def _cmd_queue(settings, kv_store: KeyValueDatabase, resource: Optional[str]) -> int:
    queue = _open_queue(settings, kv_store)
    for mutation in queue.pending(resource):
        sys.stdout.write(json.dumps(mutation.model_dump(mode="json"), ensure_ascii=False) + "\n")
    return 0


def _cmd_discard(settings, kv_store: KeyValueDatabase, mutation_id: str) -> int:
    queue = _open_queue(settings, kv_store)
    if not queue.discard(mutation_id):
        sys.stderr.write(f"No pending mutation with id {mutation_id}\n")
        return 1
    return 0


def _cmd_clear_cache(settings, kv_store: KeyValueDatabase, resource: str) -> int:
    prefix = settings.get("sync", {}).get("cache_key_prefix", CACHE_KEY_PREFIX)
    removed = kv_store.delete_key(f"{prefix}{resource}")
    if not removed:
        sys.stderr.write(f"No cached snapshot for '{resource}'\n")
    return 0


async def _cmd_drain(settings, kv_store: KeyValueDatabase) -> int:
    engine = SyncEngine.from_settings(settings, kv_store=kv_store)
    try:
        result = await engine.trigger_sync()
    finally:
        await engine.aclose()
    if result is None:
        sys.stderr.write("Drain did not run\n")
        return 1
    summary = {
        "replayed": result.replayed,
        "remaining": result.remaining,
        "error": str(result.error) if result.error else None,
        "failed_mutation": result.failed_mutation.mutation_id if result.failed_mutation else None,
    }
    sys.stdout.write(json.dumps(summary, ensure_ascii=False) + "\n")
    return 0 if result.error is None else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = load_settings(config_path=args.config)
    configure_logging(settings, log_to_file=not args.no_log_file)

    try:
        kv_store = KeyValueDatabase(get_kv_store_path(settings))
    except DatabaseError as e:
        logger.error(f"Could not open the durable store: {e}")
        return 2

    if args.command == "drain":
        return asyncio.run(_cmd_drain(settings, kv_store))
    try:
        if args.command == "queue":
            return _cmd_queue(settings, kv_store, args.resource)
        if args.command == "discard":
            return _cmd_discard(settings, kv_store, args.mutation_id)
        return _cmd_clear_cache(settings, kv_store, args.resource)
    finally:
        kv_store.close_connection()


if __name__ == "__main__":
    raise SystemExit(main())

#
# End of __main__.py
#######################################################################################################################
