"""Lookup tables for relationship kinds, their gendered surface terms and reciprocals."""

from kinsync.domain.contact import Gender
from kinsync.domain.relationships import RelationshipKind

KINDS: frozenset[str] = frozenset(kind.value for kind in RelationshipKind)

# Gendered surface forms per canonical kind. Kinds without an entry have no gendered variant.
GENDERED_FORMS: dict[str, dict[str, str]] = {
    "parent": {"M": "father", "F": "mother"},
    "child": {"M": "son", "F": "daughter"},
    "sibling": {"M": "brother", "F": "sister"},
    "spouse": {"M": "husband", "F": "wife"},
    "auncle": {"M": "uncle", "F": "aunt"},
    "nibling": {"M": "nephew", "F": "niece"},
    "grandparent": {"M": "grandfather", "F": "grandmother"},
    "grandchild": {"M": "grandson", "F": "granddaughter"},
}

RECIPROCALS: dict[str, str] = {
    "parent": "child",
    "child": "parent",
    "sibling": "sibling",
    "spouse": "spouse",
    "partner": "partner",
    "friend": "friend",
    "colleague": "colleague",
    "relative": "relative",
    "auncle": "nibling",
    "nibling": "auncle",
    "grandparent": "grandchild",
    "grandchild": "grandparent",
    "cousin": "cousin",
}

# Colloquial synonyms, treated exactly like the formal gendered terms.
COLLOQUIAL_TERMS: dict[str, tuple[str, Gender | None]] = {
    "dad": ("parent", "M"),
    "daddy": ("parent", "M"),
    "mom": ("parent", "F"),
    "mommy": ("parent", "F"),
    "mum": ("parent", "F"),
    "grandpa": ("grandparent", "M"),
    "grandma": ("grandparent", "F"),
}


def _build_term_table() -> dict[str, tuple[str, Gender | None]]:
    table: dict[str, tuple[str, Gender | None]] = {kind: (kind, None) for kind in KINDS}
    for kind, forms in GENDERED_FORMS.items():
        for gender, term in forms.items():
            table[term] = (kind, gender)  # type: ignore[assignment]
    table.update(COLLOQUIAL_TERMS)
    return table


_TERMS = _build_term_table()


def register_term(term: str, kind: str, gender: Gender | None = None) -> None:
    """Teach the registry a new surface term for an existing canonical kind."""
    if kind not in KINDS:
        raise ValueError(f"Unknown relationship kind: {kind}")
    _TERMS[term.strip().lower()] = (kind, gender)


def lookup_term(term: str) -> tuple[str, Gender | None] | None:
    """Return ``(kind, implied gender)`` for a known surface term, else None."""
    return _TERMS.get(term.strip().lower())


def base_kind(term: str) -> str:
    """Map any surface term to its canonical kind.

    Matching is case-insensitive and ignores surrounding whitespace. Unknown
    terms come back unchanged (apart from trimming) so custom kinds survive.
    """
    entry = lookup_term(term)
    if entry is None:
        return term.strip()
    return entry[0]


def is_known_kind(term: str) -> bool:
    return base_kind(term) in KINDS


def gendered_form(kind: str, gender: Gender | None) -> str:
    """Surface term for ``kind`` given the gender of the contact it points at."""
    canonical = base_kind(kind)
    forms = GENDERED_FORMS.get(canonical, {})
    if gender in forms:
        return forms[gender]
    return canonical


def reciprocal_of(kind: str) -> str | None:
    return RECIPROCALS.get(base_kind(kind))


def is_symmetric(kind: str) -> bool:
    canonical = base_kind(kind)
    return RECIPROCALS.get(canonical) == canonical
