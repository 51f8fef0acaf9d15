"""Splitting and joining of note text and its YAML frontmatter block."""

import re
from typing import Any

import yaml

# Regex to match YAML frontmatter: starts with ---, ends with ---
FRONTMATTER_PATTERN = re.compile(r"^---[ \t]*\n(?:(.*?)\n)?---[ \t]*(?:\n|$)", re.DOTALL)


def split_note(text: str) -> tuple[str, str]:
    """Split note text into its raw frontmatter block (delimiters included) and body."""
    match = FRONTMATTER_PATTERN.match(text)
    if not match:
        return "", text
    return text[: match.end()], text[match.end() :]


def parse_frontmatter(text: str) -> dict[str, Any]:
    """Decode the frontmatter of a note, returning an empty dict when there is none.

    Raises:
        yaml.YAMLError: If the block is not valid YAML
        ValueError: If the block is not a YAML mapping
    """
    match = FRONTMATTER_PATTERN.match(text)
    if not match:
        return {}
    data = yaml.safe_load(match.group(1) or "")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Frontmatter must be a YAML mapping")
    return {str(key): value for key, value in data.items()}


def render_frontmatter(data: dict[str, Any]) -> str:
    if not data:
        return ""
    dumped = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{dumped}---\n"


def replace_body(text: str, body: str) -> str:
    """Swap the body of a note, leaving its frontmatter block byte-for-byte intact."""
    block, _ = split_note(text)
    return block + body


def replace_frontmatter(text: str, data: dict[str, Any]) -> str:
    _, body = split_note(text)
    return render_frontmatter(data) + body


def apply_patch(record: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``record`` with ``patch`` applied (None deletes a key)."""
    updated = dict(record)
    for key, value in patch.items():
        if value is None:
            updated.pop(key, None)
        else:
            updated[key] = value
    return updated
