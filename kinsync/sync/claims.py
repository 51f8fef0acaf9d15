"""Temporary exclusive ownership of notes by subsystems outside the sync engine."""

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class FileClaimRegistry:
    """Set of note paths currently being written by another subsystem (e.g. a VCF import).

    The sync engine skips claimed notes instead of racing the external writer.
    Share one instance between the engine and the subsystems that claim files.
    """

    def __init__(self) -> None:
        self._claimed: set[str] = set()

    def claim(self, path: str) -> None:
        self._claimed.add(path)
        logger.debug(f"Claimed {path}")

    def release(self, path: str) -> None:
        self._claimed.discard(path)
        logger.debug(f"Released {path}")

    def is_claimed(self, path: str) -> bool:
        return path in self._claimed

    @contextmanager
    def claimed(self, path: str) -> Iterator[None]:
        """Hold a claim on ``path`` for the duration of the block."""
        self.claim(path)
        try:
            yield
        finally:
            self.release(path)

    def clear(self) -> None:
        self._claimed.clear()

    def __len__(self) -> int:
        return len(self._claimed)


default_claims = FileClaimRegistry()
