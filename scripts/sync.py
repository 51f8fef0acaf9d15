"""CLI that loads a vault's contacts, repairs reciprocals and optionally watches for edits"""

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger

from kinsync.config import settings
from kinsync.store.vault import VaultNoteStore
from kinsync.store.watcher import VaultWatcher
from kinsync.sync.orchestrator import SyncOrchestrator


async def main(vault: str, contacts_folder: str, sync_all: bool, watch: bool) -> None:
    store = VaultNoteStore(root=Path(vault), contacts_folder=contacts_folder)
    orchestrator = SyncOrchestrator(
        store=store,
        debounce_seconds=settings.debounce_seconds,
        revision_field=settings.revision_field,
        notify=lambda message: logger.warning(message),
    )

    results = [await orchestrator.initialize()]
    print(f"Loaded {results[0].processed} contacts, repaired {results[0].repaired} reciprocals")
    if sync_all:
        results.append(await orchestrator.sync_all())
        print(f"Synced {results[1].processed} contacts, repaired {results[1].repaired} reciprocals")
    for result in results:
        for error in result.errors:
            print(f"Error: {error}")

    stats = orchestrator.get_graph_stats()
    print(f"Graph: {stats.nodes} contacts, {stats.edges} relationships")

    if watch:
        watcher = VaultWatcher(
            store=store,
            poll_interval=settings.watch_poll_interval,
            on_delete=orchestrator.handle_delete,
        )
        await watcher.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await watcher.stop()
            await orchestrator.shutdown()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--vault", type=str, required=False, help="Vault folder", default=str(settings.vault_path)
    )
    parser.add_argument(
        "--contacts-folder",
        type=str,
        required=False,
        help="Folder of contact notes, relative to the vault",
        default=settings.contacts_folder,
    )
    parser.add_argument(
        "--sync-all", action="store_true", help="Sync every contact in both directions"
    )
    parser.add_argument("--watch", action="store_true", help="Keep running and sync on edits")

    args = parser.parse_args()

    logger.configure(handlers=[{"sink": sys.stderr, "level": settings.log_level}])
    try:
        asyncio.run(
            main(
                vault=args.vault,
                contacts_folder=args.contacts_folder,
                sync_all=args.sync_all,
                watch=args.watch,
            )
        )
    except KeyboardInterrupt:
        pass
