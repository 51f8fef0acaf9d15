"""Gender parsing and inference from gendered relationship terms."""

from kinsync.domain.contact import Gender

from .registry import base_kind, lookup_term

_GENDER_ALIASES: dict[str, Gender] = {
    "M": "M",
    "MALE": "M",
    "F": "F",
    "FEMALE": "F",
    "NB": "NB",
    "NON-BINARY": "NB",
    "NONBINARY": "NB",
    "U": "U",
    "UNSPECIFIED": "U",
}


def parse_gender(value: object) -> Gender | None:
    """Normalize a GENDER field value, returning None when it is blank or unrecognized."""
    if not isinstance(value, str) or not value.strip():
        return None
    return _GENDER_ALIASES.get(value.strip().upper())


def infer_gender(term: str) -> Gender | None:
    """Gender implied by a relationship term, e.g. "aunt" -> "F".

    Genderless terms ("friend") and the canonical kind names ("parent") imply nothing.
    """
    entry = lookup_term(term)
    if entry is None:
        return None
    return entry[1]


def to_genderless(term: str) -> str:
    return base_kind(term)
