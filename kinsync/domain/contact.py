"""Contact domain models."""

from pathlib import PurePosixPath
from typing import Literal

from pydantic import BaseModel

Gender = Literal["M", "F", "NB", "U"]


class ContactNode(BaseModel):
    """A contact known to the relationship graph.

    Attributes:
        id: Stable identifier (the UID when known, else ``name:<display name>``)
        name: Display name (FN, or "given family", or the note's file stem)
        uid: UID from the contact's frontmatter, if any
        gender: Recorded gender, unset when the note has none
        path: Vault-relative path of the backing note. The note store owns
            the note; the node only remembers where it lives.
    """

    id: str
    name: str
    uid: str | None = None
    gender: Gender | None = None
    path: str | None = None

    @property
    def link_name(self) -> str:
        """Name to use inside a wikilink so that the link resolves to the note."""
        if self.path:
            return PurePosixPath(self.path).stem
        return self.name
