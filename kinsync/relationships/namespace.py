"""Parsing, building and resolution of namespaced contact references."""

import logging
import re
from typing import Callable

from kinsync.domain.contact import ContactNode, Gender
from kinsync.domain.relationships import NamespaceReference
from kinsync.store.base import ContactLookup

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

# Longest prefix first so "urn:uuid:" is not mistaken for anything shorter.
_PREFIXES: list[tuple[str, str]] = [
    ("urn:uuid:", "urn:uuid"),
    ("uid:", "uid"),
    ("name:", "name"),
]

Lookup = Callable[[str], ContactNode | None]


def parse_reference(value: str) -> NamespaceReference | None:
    """Parse ``urn:uuid:...``, ``uid:...`` or ``name:...``.

    Anything else, including a bare name, returns None.
    """
    if not isinstance(value, str):
        return None
    value = value.strip()
    for prefix, ref_type in _PREFIXES:
        if value.startswith(prefix):
            identifier = value[len(prefix) :].strip()
            if not identifier:
                return None
            return NamespaceReference(
                type=ref_type, identifier=identifier  # type: ignore[arg-type]
            )
    return None


def build_reference(identifier: str | None, display_name: str) -> str:
    """Build the preferred reference for a contact.

    ``urn:uuid`` for UUID-shaped identifiers, ``uid`` for any other stable
    identifier, ``name`` only when no identifier is known.
    """
    if identifier and identifier.strip():
        identifier = identifier.strip()
        if identifier.startswith("urn:uuid:"):
            identifier = identifier[len("urn:uuid:") :]
        if UUID_PATTERN.match(identifier):
            return f"urn:uuid:{identifier}"
        return f"uid:{identifier}"
    return f"name:{display_name.strip()}"


def resolve_reference(
    reference: NamespaceReference, lookup_by_uid: Lookup, lookup_by_name: Lookup
) -> ContactNode | None:
    """Find the contact a reference points at, or None when nothing matches."""
    if reference.type == "name":
        return lookup_by_name(reference.identifier)
    return lookup_by_uid(reference.identifier)


class ReferenceResolver:
    """Resolves relationship values and Related list names against known contacts."""

    def __init__(self, lookup: ContactLookup):
        """Initialize the resolver.

        Args:
            lookup: Contact lookup collaborator (usually the relationship graph)
        """
        self.lookup = lookup

    def resolve(self, value: str) -> ContactNode | None:
        """Resolve a namespaced value. Unparseable or unmatched values give None."""
        reference = parse_reference(value)
        if reference is None:
            return None
        contact = resolve_reference(reference, self.lookup.by_uid, self.lookup.by_name)
        if contact is None:
            logger.debug(f"Unresolved reference kept as-is: {value}")
        return contact

    def reference_for_name(self, name: str) -> str:
        """Turn a Related list target name into a frontmatter value."""
        contact = self.lookup.by_name(name)
        if contact is None:
            return build_reference(None, name)
        return build_reference(contact.uid, contact.name)

    def target_key(self, value: str) -> str:
        """Key under which two values denote the same target.

        Resolved values key on the contact id; unresolved ones on their
        identifier, case-insensitively.
        """
        contact = self.resolve(value)
        if contact is not None:
            return contact.id
        reference = parse_reference(value)
        identifier = reference.identifier if reference else value.strip()
        return f"unresolved:{identifier.lower()}"

    def describe(self, value: str) -> tuple[str, Gender | None]:
        """Return the wikilink name and gender to render for a value."""
        contact = self.resolve(value)
        if contact is not None:
            return contact.link_name, contact.gender
        reference = parse_reference(value)
        return (reference.identifier if reference else value.strip()), None
