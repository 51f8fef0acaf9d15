"""Mapping between a contact's frontmatter record and its relationship entries."""

from collections import defaultdict
from typing import Any, Iterable

from kinsync.domain.relationships import RelationshipEntry
from kinsync.relationships.registry import base_kind
from kinsync.relationships.relationship_set import (
    RelationshipSet,
    clean_value,
    parse_related_key,
    related_key,
)


def decode_set(record: dict[str, Any]) -> RelationshipSet:
    """Decode every RELATED key of a record into a RelationshipSet.

    Besides the flat key forms, a RELATED key holding a mapping is expanded:
    a YAML layer turns ``RELATED.friend: x`` into ``{"RELATED": {"friend": x}}``.
    Each string property becomes an entry of kind ``<parent kind>.<property>``
    (just ``<property>`` under a bare ``RELATED`` key). Other nested values are
    skipped.
    """
    relationships = RelationshipSet()
    for key, value in record.items():
        parsed = parse_related_key(key)
        if parsed is None:
            continue
        if isinstance(value, dict):
            parent = "" if key == "RELATED" else parsed.kind
            for prop, nested in value.items():
                if not isinstance(nested, str):
                    continue
                kind = f"{parent}.{prop}" if parent else str(prop)
                relationships.add(kind, nested)
            continue
        relationships.add(parsed.kind, value)
    return relationships


def decode(record: dict[str, Any]) -> list[RelationshipEntry]:
    return decode_set(record).get_entries()


def encode(entries: Iterable[RelationshipEntry]) -> dict[str, str]:
    """Canonical RELATED fields for a list of entries."""
    return RelationshipSet.from_entries(entries).to_frontmatter_fields()


def related_keys(record: dict[str, Any]) -> list[str]:
    return [key for key in record if parse_related_key(key) is not None]


def replace_patch(record: dict[str, Any], relationships: RelationshipSet) -> dict[str, Any]:
    """Minimal patch that makes the record's RELATED keys exactly ``relationships``.

    Keys whose current value already matches are left out of the patch; stale
    RELATED keys map to None (delete). Other keys are never touched.
    """
    fields = relationships.to_frontmatter_fields()
    patch: dict[str, Any] = {
        key: value for key, value in fields.items() if record.get(key) != value
    }
    for key in related_keys(record):
        if key not in fields:
            patch[key] = None
    return patch


def _is_canonical(record: dict[str, Any]) -> bool:
    """Whether the RELATED keys already use the bracket form with gapless indices."""
    indices: dict[str, list[int]] = defaultdict(list)
    values: dict[str, set[str]] = defaultdict(set)
    for key in related_keys(record):
        parsed = parse_related_key(key)
        value = record[key]
        if parsed is None or base_kind(parsed.kind) != parsed.kind:
            return False
        if key != related_key(parsed.kind, parsed.index):
            return False
        if not isinstance(value, str) or clean_value(value) != value:
            return False
        if value in values[parsed.kind]:
            return False
        indices[parsed.kind].append(parsed.index)
        values[parsed.kind].add(value)
    return all(sorted(found) == list(range(len(found))) for found in indices.values())


def append_patch(record: dict[str, Any], additions: Iterable[RelationshipEntry]) -> dict[str, Any]:
    """Patch that adds entries without disturbing the ones already stored.

    When the existing keys are canonical, new entries take the next free
    index of their kind so that existing keys keep their values. Otherwise
    the merged set is rewritten canonically.
    """
    existing = decode_set(record)
    new = RelationshipSet()
    for entry in additions:
        if not existing.has(entry.kind, entry.value):
            new.add(entry.kind, entry.value)
    if new.is_empty():
        return {}

    if not _is_canonical(record):
        return replace_patch(record, existing.merge(new))

    patch: dict[str, Any] = {}
    counts = {kind: len(existing.get_entries_by_kind(kind)) for kind in {e.kind for e in new}}
    for entry in new.get_entries():
        patch[related_key(entry.kind, counts[entry.kind])] = entry.value
        counts[entry.kind] += 1
    return patch
