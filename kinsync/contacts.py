"""Recognizing contact notes and deriving their graph identity from frontmatter."""

from pathlib import PurePosixPath
from typing import Any

from kinsync.domain.contact import ContactNode
from kinsync.relationships.gender import parse_gender


def _text(record: dict[str, Any], key: str) -> str:
    value = record.get(key)
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def is_contact(record: dict[str, Any]) -> bool:
    """A note is a contact when it has a UID, a formatted name, or both name parts."""
    if _text(record, "UID") or _text(record, "FN"):
        return True
    return bool(_text(record, "N.GN") and _text(record, "N.FN"))


def display_name(record: dict[str, Any], path: str) -> str:
    name = _text(record, "FN")
    if name:
        return name
    parts = " ".join(part for part in (_text(record, "N.GN"), _text(record, "N.FN")) if part)
    return parts or PurePosixPath(path).stem


def contact_from_frontmatter(path: str, record: dict[str, Any]) -> ContactNode | None:
    """Build the graph node for a note, or None when the note is not a contact."""
    if not is_contact(record):
        return None
    name = display_name(record, path)
    uid = _text(record, "UID") or None
    return ContactNode(
        id=uid or f"name:{name}",
        name=name,
        uid=uid,
        gender=parse_gender(record.get("GENDER")),
        path=path,
    )
