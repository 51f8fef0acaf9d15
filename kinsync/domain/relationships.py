"""Relationship domain models."""

import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RelationshipKind(str, Enum):
    """Closed vocabulary of canonical, genderless relationship kinds."""

    PARENT = "parent"
    CHILD = "child"
    SIBLING = "sibling"
    SPOUSE = "spouse"
    PARTNER = "partner"
    FRIEND = "friend"
    COLLEAGUE = "colleague"
    RELATIVE = "relative"
    AUNCLE = "auncle"
    NIBLING = "nibling"
    GRANDPARENT = "grandparent"
    GRANDCHILD = "grandchild"
    COUSIN = "cousin"


class RelationshipEdge(BaseModel):
    """A directed, typed edge between two contacts in the graph."""

    source_id: str
    target_id: str
    kind: str  # always a RelationshipKind value
    created: float = Field(default_factory=time.time)


class RelationshipEntry(BaseModel):
    """One (kind, target) pair as stored in frontmatter.

    ``value`` is a namespaced reference: ``urn:uuid:...``, ``uid:...`` or ``name:...``.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    value: str


class NamespaceReference(BaseModel):
    """A parsed pointer at a related contact."""

    model_config = ConfigDict(frozen=True)

    type: Literal["urn:uuid", "uid", "name"]
    identifier: str

    def render(self) -> str:
        return f"{self.type}:{self.identifier}"


class RelatedListItem(BaseModel):
    """One line of a note's Related list: ``- <kind> [[<target_name>]]``."""

    model_config = ConfigDict(frozen=True)

    kind: str  # surface term as written, e.g. "father"
    target_name: str


class RelatedSection(BaseModel):
    """Decoded Related section of a note body."""

    has_heading: bool = False
    heading_level: int = 2
    items: list[RelatedListItem] = []


class MissingReciprocal(BaseModel):
    """An edge ``source -> target`` of ``expected_kind`` that should exist but does not."""

    source: str
    target: str
    expected_kind: str


class GraphStats(BaseModel):
    nodes: int
    edges: int


class SyncResult(BaseModel):
    """Outcome of a single-contact sync operation."""

    path: str
    changed: bool = False
    skipped: bool = False
    reason: str = ""
    added: list[RelationshipEntry] = []
    propagated: list[str] = []  # paths of contacts that received reciprocal updates
    error: str | None = None


class BatchResult(BaseModel):
    """Outcome of a batch operation such as ``ensure_consistency`` or ``sync_all``."""

    processed: int = 0
    repaired: int = 0
    errors: list[str] = []
