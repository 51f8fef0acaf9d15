"""In-memory directed graph of contacts and their typed relationships."""

import logging
from pathlib import PurePosixPath

from kinsync.domain.contact import ContactNode
from kinsync.domain.relationships import GraphStats, MissingReciprocal, RelationshipEdge
from kinsync.errors import InvalidRelationshipKindError
from kinsync.relationships.registry import KINDS, base_kind, reciprocal_of

logger = logging.getLogger(__name__)


class RelationshipGraph:
    """Contacts keyed by id, with edges stored per source contact.

    Edges refer to contacts by id only, so relationship cycles never become
    object reference cycles. The graph also serves as the contact lookup for
    resolving references.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, ContactNode] = {}
        self._edges: dict[str, dict[tuple[str, str], RelationshipEdge]] = {}
        self._dirty: set[str] = set()
        self._shared_ids: set[str] = set()

    # Contacts

    def add_contact(self, contact_id: str, node: ContactNode) -> None:
        """Insert or update a contact. Existing edges are kept."""
        existing = self._nodes.get(contact_id)
        if existing is not None and existing.path != node.path:
            logger.warning(f"Contact id {contact_id} is used by {existing.path} and {node.path}")
            self._shared_ids.add(contact_id)
        self._nodes[contact_id] = node
        self._edges.setdefault(contact_id, {})

    def remove_contact(self, contact_id: str) -> None:
        """Remove a contact with its outgoing and incoming edges."""
        self._nodes.pop(contact_id, None)
        self._edges.pop(contact_id, None)
        self._dirty.discard(contact_id)
        self._shared_ids.discard(contact_id)
        for edges in self._edges.values():
            for key in [key for key in edges if key[0] == contact_id]:
                del edges[key]

    def is_shared(self, contact_id: str) -> bool:
        """Whether more than one note has claimed this contact id."""
        return contact_id in self._shared_ids

    def get_contact(self, contact_id: str) -> ContactNode | None:
        return self._nodes.get(contact_id)

    def contacts(self) -> list[ContactNode]:
        return list(self._nodes.values())

    def by_uid(self, uid: str) -> ContactNode | None:
        uid = uid.strip().removeprefix("urn:uuid:")
        for node in self._nodes.values():
            if node.uid is None:
                continue
            candidate = node.uid.removeprefix("urn:uuid:")
            if candidate.lower() == uid.lower():
                return node
        return None

    def by_name(self, name: str) -> ContactNode | None:
        """Find a contact by display name, or by the file stem of its note."""
        wanted = name.strip().lower()
        for node in self._nodes.values():
            if node.name.lower() == wanted:
                return node
        for node in self._nodes.values():
            if node.path and PurePosixPath(node.path).stem.lower() == wanted:
                return node
        return None

    def all_named(self, name: str) -> list[ContactNode]:
        """Every contact whose display name or note file stem matches ``name``."""
        wanted = name.strip().lower()
        return [
            node
            for node in self._nodes.values()
            if node.name.lower() == wanted
            or (node.path is not None and PurePosixPath(node.path).stem.lower() == wanted)
        ]

    def by_path(self, path: str) -> ContactNode | None:
        for node in self._nodes.values():
            if node.path == path:
                return node
        return None

    # Edges

    def add_edge(self, source_id: str, target_id: str, kind: str) -> bool:
        """Add a directed edge. Gendered terms are stored under their canonical kind.

        Returns:
            True if the edge is new

        Raises:
            InvalidRelationshipKindError: If the kind is not a canonical relationship kind
        """
        canonical = base_kind(kind)
        if canonical not in KINDS:
            raise InvalidRelationshipKindError(f"Unknown relationship kind: {kind!r}")
        edges = self._edges.setdefault(source_id, {})
        if (target_id, canonical) in edges:
            return False
        edges[(target_id, canonical)] = RelationshipEdge(
            source_id=source_id, target_id=target_id, kind=canonical
        )
        return True

    def remove_edge(self, source_id: str, target_id: str, kind: str) -> bool:
        edges = self._edges.get(source_id, {})
        return edges.pop((target_id, base_kind(kind)), None) is not None

    def has_edge(self, source_id: str, target_id: str, kind: str) -> bool:
        return (target_id, base_kind(kind)) in self._edges.get(source_id, {})

    def edges_of(self, contact_id: str) -> list[RelationshipEdge]:
        """Outgoing edges of a contact, sorted by (kind, target)."""
        edges = self._edges.get(contact_id, {})
        return sorted(edges.values(), key=lambda edge: (edge.kind, edge.target_id))

    def edges(self) -> list[RelationshipEdge]:
        return [edge for source_id in self._edges for edge in self.edges_of(source_id)]

    def replace_edges(self, source_id: str, edges: list[tuple[str, str]]) -> None:
        """Set the outgoing edges of a contact to exactly ``(target id, kind)`` pairs."""
        self._edges[source_id] = {}
        for target_id, kind in edges:
            self.add_edge(source_id, target_id, kind)

    # Reciprocals

    def find_missing_reciprocals(self) -> list[MissingReciprocal]:
        """Edges that should exist as the reverse of an existing edge but do not.

        Each result names the contact that should hold the reciprocal as its
        ``source``.
        """
        missing: list[MissingReciprocal] = []
        seen: set[tuple[str, str, str]] = set()
        for edge in self.edges():
            expected = reciprocal_of(edge.kind)
            if expected is None or edge.target_id not in self._nodes:
                continue
            key = (edge.target_id, edge.source_id, expected)
            if key in seen or self.has_edge(*key):
                continue
            seen.add(key)
            missing.append(
                MissingReciprocal(
                    source=edge.target_id, target=edge.source_id, expected_kind=expected
                )
            )
        return missing

    def repair_reciprocals(self) -> list[MissingReciprocal]:
        """Add every missing reciprocal edge and mark its source contact for write-back."""
        missing = self.find_missing_reciprocals()
        for item in missing:
            self.add_edge(item.source, item.target, item.expected_kind)
            self._dirty.add(item.source)
            logger.info(
                f"Added reciprocal {item.expected_kind} edge {item.source} -> {item.target}"
            )
        return missing

    def pop_dirty(self) -> set[str]:
        """Contacts whose notes need a write-back, clearing the mark."""
        dirty, self._dirty = self._dirty, set()
        return dirty

    # Lifecycle

    def stats(self) -> GraphStats:
        return GraphStats(
            nodes=len(self._nodes), edges=sum(len(edges) for edges in self._edges.values())
        )

    def clear(self) -> None:
        self._nodes.clear()
        self._edges.clear()
        self._dirty.clear()
        self._shared_ids.clear()
