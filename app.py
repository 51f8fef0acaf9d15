import sys

from loguru import logger

from kinsync.api import create_app
from kinsync.config import settings
from kinsync.store.vault import VaultNoteStore
from kinsync.store.watcher import VaultWatcher
from kinsync.sync.orchestrator import SyncOrchestrator

logger.configure(handlers=[{"sink": sys.stderr, "level": settings.log_level}])

logger.info(f"Serving contact relationships from {settings.vault_path}")
store = VaultNoteStore(root=settings.vault_path, contacts_folder=settings.contacts_folder)
orchestrator = SyncOrchestrator(
    store=store,
    debounce_seconds=settings.debounce_seconds,
    revision_field=settings.revision_field,
    notify=lambda message: logger.warning(message),
)
watcher = VaultWatcher(
    store=store,
    poll_interval=settings.watch_poll_interval,
    on_delete=orchestrator.handle_delete,
)
app = create_app(orchestrator=orchestrator, watcher=watcher)
