"""Field mapping engine, transform catalog and type coercion."""

from __future__ import annotations

from .coercion import coerce, normalize_data_type
from .engine import (
    MISSING,
    ColumnInfo,
    ResolvedField,
    as_payload,
    auto_map,
    lookup,
    resolve_mappings,
)
from .transforms import TRANSFORMS, apply_transform, is_known_transform, register_transform

__all__ = [
    "MISSING",
    "TRANSFORMS",
    "ColumnInfo",
    "ResolvedField",
    "apply_transform",
    "as_payload",
    "auto_map",
    "coerce",
    "is_known_transform",
    "lookup",
    "normalize_data_type",
    "register_transform",
    "resolve_mappings",
]
