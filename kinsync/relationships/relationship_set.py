"""A deduplicated, deterministically ordered set of relationships for one contact."""

import re
from typing import Any, Callable, Iterable, Iterator

from pydantic import BaseModel

from kinsync.domain.relationships import RelationshipEntry

from .registry import base_kind

RELATED_PREFIX = "RELATED"

# RELATED, RELATED[kind], RELATED[3:kind], RELATED;TYPE=kind, RELATED.kind
RELATED_KEY_PATTERN = re.compile(
    r"^RELATED(?:\[(?:(?P<index>\d+):)?(?P<bracket>[^\]]+)\]|;TYPE=(?P<param>.+)|\.(?P<dot>.+))?$"
)

_PLACEHOLDERS = {"null", "undefined"}

# Kinds that would not survive being written back as RELATED[kind] or RELATED[N:kind]
UNSAFE_KIND_PATTERN = re.compile(r"^\d+:|[\[\]]")


class RelatedKey(BaseModel):
    """A parsed RELATED frontmatter key."""

    kind: str
    index: int = 0


class RelationshipDiff(BaseModel):
    added: list[RelationshipEntry] = []
    removed: list[RelationshipEntry] = []


def parse_related_key(key: str) -> RelatedKey | None:
    """Parse a frontmatter key of the RELATED family, or return None for any other key.

    A bare ``RELATED`` key carries the generic kind ``related``. Keys whose kind
    could not be written back unchanged (``RELATED;TYPE=2:friend``) are skipped.
    """
    match = RELATED_KEY_PATTERN.match(key)
    if not match:
        return None
    parsed = _parse_matched(match)
    if not is_valid_kind(parsed.kind):
        return None
    return parsed


def _parse_matched(match: re.Match) -> RelatedKey:
    if match.group("bracket") is not None:
        index = int(match.group("index")) if match.group("index") else 0
        return RelatedKey(kind=match.group("bracket").strip(), index=index)
    if match.group("param") is not None:
        return RelatedKey(kind=match.group("param").strip())
    if match.group("dot") is not None:
        return RelatedKey(kind=match.group("dot").strip())
    return RelatedKey(kind="related")


def is_valid_kind(kind: str) -> bool:
    return bool(kind.strip()) and not UNSAFE_KIND_PATTERN.search(kind)


def related_key(kind: str, index: int = 0) -> str:
    """Canonical key for the ``index``-th entry of ``kind`` (0 is the bare key)."""
    if index == 0:
        return f"{RELATED_PREFIX}[{kind}]"
    return f"{RELATED_PREFIX}[{index}:{kind}]"


def clean_value(value: Any) -> str | None:
    """Normalize a stored target value, returning None for blanks and placeholders."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, (bool, int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() in _PLACEHOLDERS:
        return None
    return value


class RelationshipSet:
    """Relationships of one contact.

    Exact (kind, value) duplicates collapse, blank and placeholder values are
    never stored, kinds are normalized to their genderless form, and entries
    are always returned sorted by (kind, value).
    """

    def __init__(self, entries: Iterable[RelationshipEntry] = ()):
        self._entries: set[tuple[str, str]] = set()
        for entry in entries:
            self.add(entry.kind, entry.value)

    @classmethod
    def from_entries(
        cls, pairs: Iterable[RelationshipEntry | tuple[str, str]]
    ) -> "RelationshipSet":
        instance = cls()
        for pair in pairs:
            if isinstance(pair, RelationshipEntry):
                instance.add(pair.kind, pair.value)
            else:
                instance.add(*pair)
        return instance

    @classmethod
    def from_frontmatter(cls, record: dict[str, Any]) -> "RelationshipSet":
        """Collect the flat RELATED keys of a frontmatter record."""
        instance = cls()
        for key, value in record.items():
            parsed = parse_related_key(key)
            if parsed is None:
                continue
            instance.add(parsed.kind, value)
        return instance

    def add(self, kind: str, value: Any) -> bool:
        """Add a relationship. Returns False when it was blank or already present."""
        cleaned = clean_value(value)
        if cleaned is None or not isinstance(kind, str) or not is_valid_kind(kind):
            return False
        pair = (base_kind(kind), cleaned)
        if pair in self._entries:
            return False
        self._entries.add(pair)
        return True

    def remove(
        self,
        kind_or_predicate: str | Callable[[RelationshipEntry], bool],
        value: str | None = None,
    ) -> int:
        """Remove entries matching a predicate, a kind, or an exact (kind, value) pair.

        Returns:
            Number of entries removed
        """
        if callable(kind_or_predicate):
            predicate = kind_or_predicate
        else:
            kind = base_kind(kind_or_predicate)
            cleaned = clean_value(value) if value is not None else None

            def predicate(entry: RelationshipEntry) -> bool:
                return entry.kind == kind and (cleaned is None or entry.value == cleaned)

        doomed = {(e.kind, e.value) for e in self.get_entries() if predicate(e)}
        self._entries -= doomed
        return len(doomed)

    def has(self, kind: str, value: str) -> bool:
        cleaned = clean_value(value)
        return cleaned is not None and (base_kind(kind), cleaned) in self._entries

    def get_entries(self) -> list[RelationshipEntry]:
        return [RelationshipEntry(kind=kind, value=value) for kind, value in sorted(self._entries)]

    def get_entries_by_kind(self, kind: str) -> list[RelationshipEntry]:
        kind = base_kind(kind)
        return [entry for entry in self.get_entries() if entry.kind == kind]

    def size(self) -> int:
        return len(self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    def diff(self, other: "RelationshipSet") -> RelationshipDiff:
        """Changes that turn this set into ``other``."""
        added = sorted(other._entries - self._entries)
        removed = sorted(self._entries - other._entries)
        return RelationshipDiff(
            added=[RelationshipEntry(kind=k, value=v) for k, v in added],
            removed=[RelationshipEntry(kind=k, value=v) for k, v in removed],
        )

    def merge(self, other: "RelationshipSet") -> "RelationshipSet":
        merged = self.clone()
        merged._entries |= other._entries
        return merged

    def clone(self) -> "RelationshipSet":
        copy = RelationshipSet()
        copy._entries = set(self._entries)
        return copy

    def to_frontmatter_fields(self) -> dict[str, str]:
        """Render canonical frontmatter fields.

        The first entry of a kind gets ``RELATED[kind]``, later ones
        ``RELATED[1:kind]``, ``RELATED[2:kind]``, ... Indices follow output
        position, so they never have gaps.
        """
        fields: dict[str, str] = {}
        counts: dict[str, int] = {}
        for kind, value in sorted(self._entries):
            index = counts.get(kind, 0)
            fields[related_key(kind, index)] = value
            counts[kind] = index + 1
        return fields

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RelationshipEntry]:
        return iter(self.get_entries())

    def __contains__(self, item: object) -> bool:
        if isinstance(item, RelationshipEntry):
            return (item.kind, item.value) in self._entries
        return False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RelationshipSet):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"RelationshipSet({self.get_entries()!r})"
