"""Keeps frontmatter, Related lists and the relationship graph of contact notes consistent."""

import logging
from functools import partial
from typing import Any, Awaitable, Callable

from kinsync.codecs import frontmatter as frontmatter_codec
from kinsync.codecs import markdown as markdown_codec
from kinsync.contacts import contact_from_frontmatter
from kinsync.domain.contact import ContactNode, Gender
from kinsync.domain.relationships import (
    BatchResult,
    GraphStats,
    MissingReciprocal,
    RelatedListItem,
    RelatedSection,
    RelationshipEntry,
    SyncResult,
)
from kinsync.errors import NoteClaimedError, NoteStoreError
from kinsync.graph.relationship_graph import RelationshipGraph
from kinsync.notes import apply_patch, replace_body, split_note
from kinsync.relationships.gender import infer_gender, parse_gender
from kinsync.relationships.namespace import ReferenceResolver, build_reference, parse_reference
from kinsync.relationships.registry import KINDS, base_kind, gendered_form, reciprocal_of
from kinsync.relationships.relationship_set import RelationshipSet
from kinsync.revision import format_revision
from kinsync.store.base import ContactStore

from .claims import FileClaimRegistry, default_claims
from .debouncer import Debouncer, SyncState

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]
Operation = Callable[[], Awaitable[SyncResult]]


class SyncOrchestrator:
    """Reconciles the two textual relationship representations of contact notes with the graph.

    Every write the orchestrator makes comes back as a change notification.
    Notes being processed are held in ``processing_files`` and notes claimed
    by other subsystems are skipped, so those notifications are dropped
    instead of starting another pass.
    """

    def __init__(
        self,
        *,
        store: ContactStore,
        debounce_seconds: float = 1.0,
        revision_field: str = "REV",
        claims: FileClaimRegistry | None = None,
        graph: RelationshipGraph | None = None,
        notify: Notifier | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Note store with frontmatter access
            debounce_seconds: Window in which repeated triggers for a note are coalesced
            revision_field: Frontmatter field that receives a timestamp on every real change
            claims: Registry of notes owned by other subsystems, shared with them
            graph: Relationship graph to maintain
            notify: Called with a message when an interactive operation fails
        """
        self.store = store
        self.revision_field = revision_field
        self.claims = claims if claims is not None else default_claims
        self.graph = graph if graph is not None else RelationshipGraph()
        self.notify = notify
        self.resolver = ReferenceResolver(self.graph)
        self.debouncer = Debouncer(debounce_seconds)
        self.processing_files: set[str] = set()
        self._subscribed = False

    # Change notifications

    def subscribe(self) -> None:
        if not self._subscribed:
            self.store.on_change(self.handle_change)
            self._subscribed = True

    def handle_change(self, path: str) -> None:
        """Entry point for change notifications: schedule a debounced markdown sync."""
        reason = self._busy_reason(path)
        if reason:
            logger.debug(f"Dropping change notification for {path} ({reason})")
            return
        operation = self._markdown_operation(path, prevent_cascade=False, replace=False)
        self.debouncer.schedule(path, operation)

    def handle_delete(self, path: str) -> None:
        self.debouncer.cancel(path)
        node = self.graph.by_path(path)
        if node is not None:
            self.graph.remove_contact(node.id)
            logger.info(f"Removed contact {node.name} ({path}) from the graph")

    def state_of(self, path: str) -> SyncState:
        if path in self.processing_files:
            return SyncState.SYNCING
        if self.debouncer.is_pending(path):
            return SyncState.DEBOUNCING
        return SyncState.IDLE

    # Claims held by other subsystems

    def mark_file_as_updating(self, path: str) -> None:
        self.claims.claim(path)

    def unmark_file_as_updating(self, path: str) -> None:
        self.claims.release(path)

    def is_file_being_updated(self, path: str) -> bool:
        return self.claims.is_claimed(path)

    # Interactive operations

    async def sync_from_markdown(
        self,
        path: str,
        *,
        prevent_cascade: bool = False,
        replace: bool = False,
        debounce: bool = True,
    ) -> SyncResult:
        """Bring a note's frontmatter up to date with its Related list.

        By default only relationships missing from the frontmatter are added;
        with ``replace`` the frontmatter's RELATED keys mirror the list exactly.
        New relationships are propagated to the other contact as reciprocals
        unless ``prevent_cascade`` is set.

        Args:
            path: Vault-relative path of the note
            prevent_cascade: Skip reciprocal propagation to other notes
            replace: Drop frontmatter relationships that are not in the Related list
            debounce: Wait for the debounce window, coalescing repeated calls

        Returns:
            Outcome of the sync. Superseded debounced calls return a skipped result.
        """
        reason = self._busy_reason(path)
        if reason:
            logger.debug(f"Skipping markdown sync of {path} ({reason})")
            return SyncResult(path=path, skipped=True, reason=reason)

        operation = self._markdown_operation(path, prevent_cascade=prevent_cascade, replace=replace)
        if not debounce:
            return await operation()
        result = await self.debouncer.schedule(path, operation)
        if result is None:
            return SyncResult(path=path, skipped=True, reason="superseded")
        return result

    async def sync_from_frontmatter(self, path: str) -> SyncResult:
        """Render a note's Related list from its frontmatter."""
        return await self._interactive(path, partial(self._frontmatter_pass, path))

    def get_graph_stats(self) -> GraphStats:
        return self.graph.stats()

    # Batch operations

    async def initialize(self) -> BatchResult:
        """Rebuild the graph from every contact note, then repair missing reciprocals."""
        self.subscribe()
        self.graph.clear()
        result = BatchResult()
        try:
            paths = await self.store.list_all_contact_notes()
        except NoteStoreError as e:
            logger.error(f"Could not list contact notes: {e}")
            result.errors.append(str(e))
            return result

        loaded: list[tuple[ContactNode, RelationshipSet, RelatedSection]] = []
        for path in paths:
            try:
                text = await self.store.read(path)
                record = await self.store.get_frontmatter(path)
            except NoteStoreError as e:
                logger.error(f"Could not load {path}: {e}")
                result.errors.append(str(e))
                continue
            node = self._index_contact(path, record)
            if node is None:
                continue
            _, body = split_note(text)
            loaded.append((node, frontmatter_codec.decode_set(record), markdown_codec.decode(body)))

        # Edges only after every node is known, so references between contacts resolve.
        for node, relationships, section in loaded:
            for target_id, kind in self._edges_from(node, relationships, section):
                self.graph.add_edge(node.id, target_id, kind)
            result.processed += 1

        consistency = await self.ensure_consistency()
        result.repaired = consistency.repaired
        result.errors.extend(consistency.errors)
        stats = self.graph.stats()
        logger.info(f"Loaded {stats.nodes} contacts with {stats.edges} relationships")
        return result

    async def ensure_consistency(self) -> BatchResult:
        """Add every missing reciprocal to the graph and write it back to the affected notes.

        Reciprocals whose note could not be written are left out of the graph
        and out of the ``repaired`` count, so a later pass picks them up again.
        """
        result = BatchResult()
        missing = self.graph.repair_reciprocals()
        result.repaired = len(missing)
        for contact_id in sorted(self.graph.pop_dirty()):
            node = self.graph.get_contact(contact_id)
            if node is None or node.path is None:
                result.repaired -= self._undo_repairs(contact_id, missing)
                continue
            try:
                outcome = await self._locked(node.path, partial(self._write_back_pass, node.path))
            except NoteStoreError as e:
                logger.error(f"Could not write reciprocals to {node.path}: {e}")
                result.errors.append(str(e))
                outcome = SyncResult(path=node.path, skipped=True, reason="error")
            if outcome.skipped:
                result.repaired -= self._undo_repairs(contact_id, missing)
                continue
            result.processed += 1
        if result.repaired:
            logger.info(f"Repaired {result.repaired} missing reciprocal relationships")
        return result

    async def sync_all(self) -> BatchResult:
        """Sync every contact note in both directions, then repair reciprocals."""
        result = BatchResult()
        try:
            paths = await self.store.list_all_contact_notes()
        except NoteStoreError as e:
            logger.error(f"Could not list contact notes: {e}")
            result.errors.append(str(e))
            return result

        for path in paths:
            try:
                outcome = await self._locked(path, partial(self._full_pass, path))
            except NoteStoreError as e:
                logger.error(f"Could not sync {path}: {e}")
                result.errors.append(str(e))
                continue
            if not outcome.skipped:
                result.processed += 1

        consistency = await self.ensure_consistency()
        result.repaired = consistency.repaired
        result.errors.extend(consistency.errors)
        return result

    async def shutdown(self) -> None:
        """Cancel pending work and forget all state."""
        await self.debouncer.cancel_all()
        self.graph.clear()
        self.processing_files.clear()

    # Locking

    def _busy_reason(self, path: str) -> str | None:
        if path in self.processing_files:
            return "locked"
        if self.claims.is_claimed(path):
            return "claimed"
        return None

    async def _locked(self, path: str, operation: Operation) -> SyncResult:
        """Run an operation holding the note's lock. Busy notes are skipped."""
        reason = self._busy_reason(path)
        if reason:
            logger.debug(f"Skipping {path} ({reason})")
            return SyncResult(path=path, skipped=True, reason=reason)
        self.processing_files.add(path)
        try:
            return await operation()
        except NoteClaimedError:
            logger.debug(f"{path} was claimed by another writer mid-sync, nothing more written")
            return SyncResult(path=path, skipped=True, reason="claimed")
        finally:
            self.processing_files.discard(path)

    async def _interactive(self, path: str, operation: Operation) -> SyncResult:
        """Run a locked operation, turning store failures into a notice and a failed result."""
        try:
            return await self._locked(path, operation)
        except NoteStoreError as e:
            logger.error(f"Relationship sync failed for {path}: {e}")
            if self.notify is not None:
                self.notify(f"Could not sync relationships for {path}: {e}")
            return SyncResult(path=path, error=str(e))

    def _markdown_operation(self, path: str, *, prevent_cascade: bool, replace: bool) -> Operation:
        return partial(
            self._interactive,
            path,
            partial(self._markdown_pass, path, prevent_cascade=prevent_cascade, replace=replace),
        )

    # Passes; the caller holds the note's lock

    async def _markdown_pass(
        self, path: str, *, prevent_cascade: bool, replace: bool
    ) -> SyncResult:
        text = await self.store.read(path)
        record = await self.store.get_frontmatter(path)
        node = self._index_contact(path, record)
        if node is None:
            return SyncResult(path=path, skipped=True, reason="not a contact")

        upgrade = self._upgrade_patch(path, record)
        record = apply_patch(record, upgrade)
        existing = frontmatter_codec.decode_set(record)
        section = markdown_codec.decode(split_note(text)[1])
        desired, genders = self._entries_from_section(section)

        known = self._target_keys(existing)
        if replace:
            # Keep the stored spelling of values that point at the same contact.
            final = RelationshipSet()
            for entry in desired:
                final.add(entry.kind, known.get(self._target_key(entry), entry.value))
            added = [entry for entry in final if self._target_key(entry) not in known]
            patch = frontmatter_codec.replace_patch(record, final)
        else:
            added = [entry for entry in desired if self._target_key(entry) not in known]
            patch = frontmatter_codec.append_patch(record, added)

        changed = await self._patch(path, {**upgrade, **patch})
        if changed:
            logger.info(f"Updated frontmatter relationships of {path}: {len(added)} added")
        updated = frontmatter_codec.decode_set(apply_patch(record, patch))
        self.graph.replace_edges(node.id, self._edges_from(node, updated, section))

        propagated: list[str] = []
        if not prevent_cascade:
            for entry in added:
                target = self.resolver.resolve(entry.value)
                if target is None or target.id == node.id or target.path is None:
                    continue
                reciprocal = reciprocal_of(entry.kind)
                gender = genders.get((entry.kind, entry.value))
                if reciprocal is None and gender is None:
                    continue
                if await self._propagate(node, target, reciprocal, gender):
                    propagated.append(target.path)

        return SyncResult(path=path, changed=changed, added=added, propagated=propagated)

    async def _frontmatter_pass(self, path: str) -> SyncResult:
        text = await self.store.read(path)
        record = await self.store.get_frontmatter(path)
        node = self._index_contact(path, record)
        if node is None:
            return SyncResult(path=path, skipped=True, reason="not a contact")
        relationships = frontmatter_codec.decode_set(record)
        for target_id, kind in self._edges_from(node, relationships, RelatedSection()):
            self.graph.add_edge(node.id, target_id, kind)
        changed = await self._render_markdown(path, text, relationships)
        return SyncResult(path=path, changed=changed)

    async def _full_pass(self, path: str) -> SyncResult:
        forward = await self._markdown_pass(path, prevent_cascade=True, replace=False)
        if forward.skipped:
            return forward
        backward = await self._frontmatter_pass(path)
        changed = forward.changed or backward.changed
        return SyncResult(path=path, changed=changed, added=forward.added)

    async def _write_back_pass(self, path: str, gender: Gender | None = None) -> SyncResult:
        """Write the graph's view of a contact into its note.

        Relationships from the graph and from the note's own Related list are
        added to the frontmatter, an inferred gender is recorded when the note
        has none, and the Related list is re-rendered from the result.
        """
        text = await self.store.read(path)
        record = await self.store.get_frontmatter(path)
        node = self._index_contact(path, record)
        if node is None:
            return SyncResult(path=path, skipped=True, reason="not a contact")

        upgrade = self._upgrade_patch(path, record)
        record = apply_patch(record, upgrade)
        existing = frontmatter_codec.decode_set(record)
        known = self._target_keys(existing)
        section = markdown_codec.decode(split_note(text)[1])
        candidates, _ = self._entries_from_section(section)
        for edge in self.graph.edges_of(node.id):
            target = self.graph.get_contact(edge.target_id)
            if target is not None:
                candidates.add(edge.kind, build_reference(target.uid, target.name))
        added = [entry for entry in candidates if self._target_key(entry) not in known]

        patch = {**upgrade, **frontmatter_codec.append_patch(record, added)}
        if gender is not None and parse_gender(record.get("GENDER")) is None:
            patch["GENDER"] = gender
            logger.info(f"Inferred gender {gender} for {path}")
        changed = await self._patch(path, patch)
        if changed:
            record = apply_patch(record, patch)
            node = self._index_contact(path, record) or node
            text = await self.store.read(path)
            logger.info(f"Wrote {len(added)} relationships back to {path}")

        rendered = await self._render_markdown(path, text, frontmatter_codec.decode_set(record))
        return SyncResult(path=path, changed=changed or rendered, added=added)

    async def _propagate(
        self,
        source: ContactNode,
        target: ContactNode,
        reciprocal: str | None,
        gender: Gender | None,
    ) -> bool:
        """Write the reciprocal of a new relationship into the target's note.

        Returns:
            True if the target's note was changed
        """
        path = target.path
        if path is None:
            return False
        is_new = reciprocal is not None and self.graph.add_edge(target.id, source.id, reciprocal)
        try:
            result = await self._locked(path, partial(self._write_back_pass, path, gender))
        except NoteStoreError as e:
            logger.error(f"Could not propagate relationship to {path}: {e}")
            result = SyncResult(path=path, skipped=True, reason="error", error=str(e))
        if result.skipped:
            # Leave the reciprocal for the next consistency pass to find.
            if is_new and reciprocal is not None:
                self.graph.remove_edge(target.id, source.id, reciprocal)
            logger.debug(f"Reciprocal write to {path} skipped ({result.reason})")
        return result.changed

    # Helpers

    def _undo_repairs(self, contact_id: str, missing: list[MissingReciprocal]) -> int:
        """Take unwritten reciprocals of a contact back out of the graph so a later pass retries."""
        undone = 0
        for item in missing:
            if item.source == contact_id:
                self.graph.remove_edge(item.source, item.target, item.expected_kind)
                undone += 1
        if undone:
            logger.debug(f"Left {undone} reciprocals of {contact_id} for the next consistency pass")
        return undone

    def _upgrade_patch(self, path: str, record: dict[str, Any]) -> dict[str, Any]:
        """Patch turning ``name:`` values into UID references where the name is now unambiguous."""
        relationships = frontmatter_codec.decode_set(record)
        upgraded = RelationshipSet()
        for entry in relationships:
            upgraded.add(entry.kind, self._upgraded_reference(entry.value))
        if upgraded == relationships:
            return {}
        logger.info(f"Upgrading name references in {path} to UID references")
        return frontmatter_codec.replace_patch(record, upgraded)

    def _upgraded_reference(self, value: str) -> str:
        reference = parse_reference(value)
        if reference is None or reference.type != "name":
            return value
        matches = self.graph.all_named(reference.identifier)
        if len(matches) != 1:
            return value
        contact = matches[0]
        if contact.uid is None or self.graph.is_shared(contact.id):
            return value
        return build_reference(contact.uid, contact.name)

    def _check_claim(self, path: str) -> None:
        """Raise if another writer claimed the note since the pass began."""
        if self.claims.is_claimed(path):
            raise NoteClaimedError(path)

    async def _patch(self, path: str, patch: dict[str, Any]) -> bool:
        """Apply a frontmatter patch, stamping the revision field. Empty patches write nothing."""
        if not patch:
            return False
        self._check_claim(path)
        await self.store.patch_frontmatter(path, {**patch, self.revision_field: format_revision()})
        return True

    async def _render_markdown(self, path: str, text: str, relationships: RelationshipSet) -> bool:
        """Re-render the Related list from ``relationships``; write only when the body changes."""
        _, body = split_note(text)
        section = markdown_codec.decode(body)
        items = []
        for entry in relationships:
            link_name, gender = self.resolver.describe(entry.value)
            term = gendered_form(entry.kind, gender) if entry.kind in KINDS else entry.kind
            items.append(RelatedListItem(kind=term, target_name=link_name))
        if not items and not section.has_heading:
            return False
        rendered = markdown_codec.encode(items, section.heading_level)
        new_body = markdown_codec.inject_into(body, rendered)
        if new_body == body:
            return False
        self._check_claim(path)
        await self.store.modify(path, replace_body(text, new_body))
        logger.info(f"Rendered Related list of {path}")
        return True

    def _index_contact(self, path: str, record: dict[str, Any]) -> ContactNode | None:
        """Insert or refresh the graph node backed by a note."""
        node = contact_from_frontmatter(path, record)
        previous = self.graph.by_path(path)
        if previous is not None and (node is None or previous.id != node.id):
            self.graph.remove_contact(previous.id)
        if node is not None:
            self.graph.add_contact(node.id, node)
        return node

    def _entries_from_section(
        self, section: RelatedSection
    ) -> tuple[RelationshipSet, dict[tuple[str, str], Gender]]:
        """Frontmatter entries for a Related list, with the gender each term implies."""
        entries = RelationshipSet()
        genders: dict[tuple[str, str], Gender] = {}
        for item in section.items:
            value = self.resolver.reference_for_name(item.target_name)
            entries.add(item.kind, value)
            gender = infer_gender(item.kind)
            if gender is not None:
                genders[(base_kind(item.kind), value)] = gender
        return entries, genders

    def _target_key(self, entry: RelationshipEntry) -> tuple[str, str]:
        """Two entries with the same key denote the same relationship."""
        return entry.kind, self.resolver.target_key(entry.value)

    def _target_keys(self, relationships: RelationshipSet) -> dict[tuple[str, str], str]:
        """Map of target key to the stored value."""
        return {self._target_key(entry): entry.value for entry in relationships}

    def _edges_from(
        self, node: ContactNode, relationships: RelationshipSet, section: RelatedSection
    ) -> list[tuple[str, str]]:
        """Graph edges ``(target id, kind)`` for resolvable relationships of a contact."""
        edges: list[tuple[str, str]] = []
        for entry in relationships:
            target = self.resolver.resolve(entry.value)
            if entry.kind in KINDS and target is not None and target.id != node.id:
                edges.append((target.id, entry.kind))
        for item in section.items:
            kind = base_kind(item.kind)
            target = self.graph.by_name(item.target_name)
            if kind in KINDS and target is not None and target.id != node.id:
                edges.append((target.id, kind))
        return edges
