"""Sync engine: debouncing, file claims and the orchestrator."""

from kinsync.sync.claims import FileClaimRegistry
from kinsync.sync.debouncer import Debouncer, SyncState
from kinsync.sync.orchestrator import SyncOrchestrator

__all__ = [
    "Debouncer",
    "FileClaimRegistry",
    "SyncOrchestrator",
    "SyncState",
]
