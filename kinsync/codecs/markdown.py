"""Reading and writing the "Related" list section of a contact note body."""

import re
from typing import Iterable, NamedTuple

from kinsync.domain.relationships import RelatedListItem, RelatedSection

HEADING_PATTERN = re.compile(r"^(#{1,6})(?:[ \t]+(.*?))?[ \t]*$")
RELATED_HEADING_PATTERN = re.compile(r"^(#{1,6})[ \t]+related[ \t]*$", re.IGNORECASE)
LIST_ITEM_PATTERN = re.compile(r"^[ \t]*[-*+][ \t]+(.*?)[ \t]*$")
# kind [[Target]] or kind [[Target|alias]]
WIKI_ITEM_PATTERN = re.compile(r"^(?P<kind>.+?)[ \t]*\[\[(?P<target>[^\[\]|]*)(?:\|[^\[\]]*)?\]\]$")
FENCE_PATTERN = re.compile(r"^[ \t]*(```|~~~)")

SECTION_TITLE = "Related"


class _Heading(NamedTuple):
    index: int
    level: int
    is_related: bool


def _headings(lines: list[str]) -> list[_Heading]:
    """All headings outside fenced code blocks."""
    found = []
    in_fence = False
    for index, line in enumerate(lines):
        text = line.rstrip("\r\n")
        if FENCE_PATTERN.match(text):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = HEADING_PATTERN.match(text)
        if match:
            is_related = RELATED_HEADING_PATTERN.match(text) is not None
            found.append(_Heading(index, len(match.group(1)), is_related))
    return found


def _section_end(headings: list[_Heading], position: int, line_count: int) -> int:
    """End of a section: the next heading of equal or shallower depth."""
    level = headings[position].level
    for heading in headings[position + 1 :]:
        if heading.level <= level:
            return heading.index
    return line_count


def _block_end(headings: list[_Heading], position: int, line_count: int) -> int:
    """End of the lines directly under a heading, before any other heading."""
    if position + 1 < len(headings):
        return headings[position + 1].index
    return line_count


def parse_item(line: str) -> RelatedListItem | None:
    """Parse one list line. Returns None for anything malformed."""
    match = LIST_ITEM_PATTERN.match(line.rstrip("\r\n"))
    if not match:
        return None
    content = match.group(1)
    if "[[" in content or "]]" in content:
        wiki = WIKI_ITEM_PATTERN.match(content)
        if not wiki:
            return None
        kind, target = wiki.group("kind").strip(), wiki.group("target").strip()
    else:
        if "[" in content or "]" in content:
            return None
        tokens = content.split()
        if len(tokens) < 2:
            return None
        kind, target = tokens[0], " ".join(tokens[1:])
    if not kind or not target:
        return None
    return RelatedListItem(kind=kind, target_name=target)


def _sorted_unique(items: Iterable[RelatedListItem]) -> list[RelatedListItem]:
    return sorted(set(items), key=lambda item: (item.kind, item.target_name))


def _items_between(lines: list[str], start: int, end: int) -> list[RelatedListItem]:
    items = []
    for line in lines[start:end]:
        item = parse_item(line)
        if item is not None:
            items.append(item)
    return items


def decode(body: str) -> RelatedSection:
    """Decode all Related sections of a note body.

    Items from every Related heading are merged, deduplicated and sorted.
    ``heading_level`` is the depth of the first section that has items
    (or of the first Related heading when none has).
    """
    lines = body.splitlines(keepends=True)
    headings = _headings(lines)
    items: list[RelatedListItem] = []
    level = None
    for position, heading in enumerate(headings):
        if not heading.is_related:
            continue
        end = _section_end(headings, position, len(lines))
        found = _items_between(lines, heading.index + 1, end)
        if level is None or (found and not items):
            level = heading.level
        items.extend(found)
    if level is None:
        return RelatedSection()
    return RelatedSection(has_heading=True, heading_level=level, items=_sorted_unique(items))


def encode(items: Iterable[RelatedListItem], level: int = 2) -> str:
    """Render a Related section. An empty item list renders just the heading."""
    lines = [f"{'#' * level} {SECTION_TITLE}\n"]
    for item in _sorted_unique(items):
        lines.append(f"- {item.kind} [[{item.target_name}]]\n")
    return "".join(lines)


def _only_list_lines(lines: list[str]) -> bool:
    return all(not line.strip() or LIST_ITEM_PATTERN.match(line.rstrip("\r\n")) for line in lines)


def inject_into(body: str, section: str) -> str:
    """Put a rendered Related section into a note body.

    An existing Related section is replaced in place; the lines directly
    under its heading are swapped out and any sub-headings are kept. Other
    Related headings that hold nothing but list lines are removed. Without a
    Related section, the new one goes before the first heading, or at the end
    of the body when there are no headings.
    """
    section = section.rstrip("\n") + "\n"
    lines = body.splitlines(keepends=True)
    headings = _headings(lines)
    related = [position for position, heading in enumerate(headings) if heading.is_related]

    if not related:
        if headings:
            first = headings[0].index
            before = "".join(lines[:first])
            if before and not before.endswith("\n"):
                before += "\n"
            return before + section + "\n" + "".join(lines[first:])
        stripped = body.rstrip("\n")
        if not stripped.strip():
            return section
        return stripped + "\n\n" + section

    primary = related[0]
    for position in related:
        heading = headings[position]
        end = _section_end(headings, position, len(lines))
        if _items_between(lines, heading.index + 1, end):
            primary = position
            break

    output: list[str] = []
    cursor = 0
    for position in related:
        start = headings[position].index
        end = _block_end(headings, position, len(lines))
        if position == primary:
            output.extend(lines[cursor:start])
            output.append(section)
            if end < len(lines):
                output.append("\n")
            cursor = end
        elif _only_list_lines(lines[start + 1 : end]):
            output.extend(lines[cursor:start])
            cursor = end
    output.extend(lines[cursor:])
    return "".join(output)
