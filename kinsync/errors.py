"""Exceptions raised by kinsync."""


class KinsyncError(Exception):
    """Base class for kinsync errors."""


class NoteStoreError(KinsyncError):
    """A note could not be read, parsed or written."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class InvalidRelationshipKindError(KinsyncError, ValueError):
    """A graph edge was given a kind outside the canonical set."""


class NoteClaimedError(KinsyncError):
    """Another writer claimed a note while it was being synced."""

    def __init__(self, path: str):
        super().__init__(f"{path}: claimed by another writer")
        self.path = path
