"""Revision timestamps in the vCard REV form (``YYYYMMDDTHHMMSSZ``)."""

from datetime import UTC, datetime

REVISION_FORMAT = "%Y%m%dT%H%M%SZ"


def format_revision(moment: datetime | None = None) -> str:
    """Format a moment (default: now) as a UTC vCard timestamp."""
    moment = moment or datetime.now(UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).strftime(REVISION_FORMAT)


def parse_revision(value: object) -> datetime | None:
    """Parse a vCard or ISO 8601 timestamp into an aware UTC datetime.

    Returns None for anything unparseable, including impossible dates such
    as ``20240231T000000Z``.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.strptime(text, REVISION_FORMAT)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def is_newer(candidate: object, current: object) -> bool:
    """Whether ``candidate`` is strictly later than ``current``. False if either is unparseable."""
    candidate_time = parse_revision(candidate)
    current_time = parse_revision(current)
    if candidate_time is None or current_time is None:
        return False
    return candidate_time > current_time
