from typing import Any, Callable, Protocol

from kinsync.domain.contact import ContactNode

ChangeCallback = Callable[[str], None]


class NoteStore(Protocol):
    """Protocol for the host's note storage."""

    async def read(self, path: str) -> str:
        """Read the full text of a note, frontmatter block included."""
        ...

    async def modify(self, path: str, text: str) -> None:
        """Replace the full text of a note."""
        ...

    async def list_all_contact_notes(self) -> list[str]:
        """List the paths of all notes that may hold contacts."""
        ...

    def on_change(self, callback: ChangeCallback) -> None:
        """Subscribe to change notifications for notes."""
        ...


class FrontmatterStore(Protocol):
    """Protocol for structured field access on notes."""

    async def get_frontmatter(self, path: str) -> dict[str, Any]:
        """Get the decoded frontmatter of a note (empty when it has none)."""
        ...

    async def patch_frontmatter(self, path: str, patch: dict[str, Any]) -> None:
        """Apply a patch to a note's frontmatter. A None value deletes the key."""
        ...


class ContactStore(NoteStore, FrontmatterStore, Protocol):
    """A note store that also gives structured access to frontmatter."""


class ContactLookup(Protocol):
    """Protocol for finding contacts by identity."""

    def by_uid(self, uid: str) -> ContactNode | None:
        ...

    def by_name(self, name: str) -> ContactNode | None:
        ...
