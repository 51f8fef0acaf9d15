"""Note store backed by a directory of markdown notes with YAML frontmatter."""

from pathlib import Path
from typing import Any

import aiofiles
import yaml
from loguru import logger

from kinsync.errors import NoteStoreError
from kinsync.notes import apply_patch, parse_frontmatter, replace_frontmatter

from .base import ChangeCallback


class VaultNoteStore:
    """Reads and writes contact notes in a vault directory.

    Paths handed in and out are POSIX strings relative to the vault root.
    """

    def __init__(self, *, root: Path, contacts_folder: str = ""):
        """Initialize the store.

        Args:
            root: Vault root directory
            contacts_folder: Folder holding contact notes, relative to the root ("" for all)
        """
        self.root = root
        self.contacts_folder = contacts_folder.strip("/")
        self._listeners: list[ChangeCallback] = []

    @property
    def contacts_dir(self) -> Path:
        return self.root / self.contacts_folder if self.contacts_folder else self.root

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root.resolve()):
            raise NoteStoreError(path, "Path escapes the vault")
        return full

    def relative(self, file: Path) -> str:
        return file.resolve().relative_to(self.root.resolve()).as_posix()

    async def read(self, path: str) -> str:
        try:
            async with aiofiles.open(self._resolve(path), encoding="utf-8") as f:
                return await f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read {path}: {e}")
            raise NoteStoreError(path, f"Could not read note: {e}") from e

    async def modify(self, path: str, text: str) -> None:
        try:
            async with aiofiles.open(self._resolve(path), "w", encoding="utf-8") as f:
                await f.write(text)
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            raise NoteStoreError(path, f"Could not write note: {e}") from e
        logger.debug(f"Wrote {path}")

    async def list_all_contact_notes(self) -> list[str]:
        """All markdown notes under the contacts folder, skipping hidden directories."""
        folder = self.contacts_dir
        if not folder.is_dir():
            logger.warning(f"Contacts folder {folder} does not exist")
            return []
        files = [
            file
            for file in folder.rglob("*.md")
            if not any(part.startswith(".") for part in file.relative_to(folder).parts)
        ]
        return sorted(self.relative(file) for file in files)

    async def get_frontmatter(self, path: str) -> dict[str, Any]:
        text = await self.read(path)
        try:
            return parse_frontmatter(text)
        except (yaml.YAMLError, ValueError) as e:
            logger.error(f"Invalid frontmatter in {path}: {e}")
            raise NoteStoreError(path, f"Invalid frontmatter: {e}") from e

    async def patch_frontmatter(self, path: str, patch: dict[str, Any]) -> None:
        text = await self.read(path)
        try:
            data = parse_frontmatter(text)
        except (yaml.YAMLError, ValueError) as e:
            raise NoteStoreError(path, f"Invalid frontmatter: {e}") from e
        await self.modify(path, replace_frontmatter(text, apply_patch(data, patch)))

    def on_change(self, callback: ChangeCallback) -> None:
        self._listeners.append(callback)

    def emit(self, path: str) -> None:
        """Deliver a change notification to every subscriber."""
        for callback in self._listeners:
            callback(path)
