"""Relationship vocabulary, gender inference, contact references and relationship sets."""

from kinsync.relationships.gender import infer_gender, parse_gender, to_genderless
from kinsync.relationships.namespace import (
    ReferenceResolver,
    build_reference,
    parse_reference,
    resolve_reference,
)
from kinsync.relationships.registry import base_kind, gendered_form, is_symmetric, reciprocal_of
from kinsync.relationships.relationship_set import RelationshipSet

__all__ = [
    "ReferenceResolver",
    "RelationshipSet",
    "base_kind",
    "build_reference",
    "gendered_form",
    "infer_gender",
    "is_symmetric",
    "parse_gender",
    "parse_reference",
    "reciprocal_of",
    "resolve_reference",
    "to_genderless",
]
