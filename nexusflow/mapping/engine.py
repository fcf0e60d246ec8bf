"""Field mapping engine: resolves a record against a pipeline's mappings."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, NamedTuple, Optional, Sequence, Union

from ..contracts import FieldMapping, IRModel
from ..errors import MappingError, ValidationError
from .coercion import coerce
from .transforms import apply_transform, is_known_transform

logger = logging.getLogger(__name__)

MISSING = object()


class ResolvedField(NamedTuple):
    """A destination column paired with its final value."""

    column: str
    value: Any


class ColumnInfo(IRModel):
    """Destination column metadata as reported by the destination."""

    name: str
    data_type: Optional[str] = None
    is_nullable: Optional[bool] = None


def lookup(record: Mapping[str, Any], path: str) -> Any:
    """Return the value at ``path`` or ``MISSING``.

    An exact key wins; otherwise a dotted path walks nested mappings.
    """
    if path in record:
        return record[path]
    if "." not in path:
        return MISSING
    current: Any = record
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return MISSING
    return current


def resolve_field(record: Mapping[str, Any], mapping: FieldMapping) -> Any:
    """Resolve one mapping. Returns ``MISSING`` when the column is skipped."""
    field = mapping.source_field
    value = lookup(record, field)

    if value is MISSING or value is None:
        if mapping.null_handling == "skip":
            return MISSING
        if mapping.null_handling == "use_default":
            if mapping.default_value is None:
                return None
            return coerce(mapping.default_value, mapping.data_type, field)
        raise MappingError(
            MappingError.MISSING_REQUIRED_FIELD,
            field,
            f"required field '{field}' is missing",
        )

    if mapping.transform_type:
        if not is_known_transform(mapping.transform_type):
            raise ValidationError(
                f"unknown transform '{mapping.transform_type}' on field '{field}'"
            )
        value = apply_transform(
            mapping.transform_type, value, mapping.transform_param, field
        )

    return coerce(value, mapping.data_type, field)


def resolve_mappings(
    record: Mapping[str, Any], mappings: Sequence[FieldMapping]
) -> List[ResolvedField]:
    """Resolve ``mappings`` against ``record`` in list order.

    Raises:
        MappingError: on a missing required field or a coercion failure.
        ValidationError: if two mappings target one column.
    """
    resolved: List[ResolvedField] = []
    seen = set()
    for mapping in mappings:
        column = mapping.destination_column
        if column in seen:
            raise ValidationError(f"destination column '{column}' is mapped twice")
        seen.add(column)

        value = resolve_field(record, mapping)
        if value is MISSING:
            logger.debug(f"Skipping column '{column}': source '{mapping.source_field}' absent")
            continue
        resolved.append(ResolvedField(column, value))
    return resolved


def as_payload(resolved: Sequence[ResolvedField]) -> dict[str, Any]:
    """Turn resolved fields into a column-keyed payload."""
    return {field.column: field.value for field in resolved}


def auto_map(
    source_fields: Sequence[str],
    destination_columns: Sequence[Union[str, ColumnInfo]],
    existing: Sequence[FieldMapping] = (),
) -> List[FieldMapping]:
    """Map source fields to same-named (case-insensitive) unmapped columns.

    Existing mappings are kept untouched and first in the result; running the
    function again on its own output adds nothing.
    """
    columns = [
        c if isinstance(c, ColumnInfo) else ColumnInfo(name=c)
        for c in destination_columns
    ]
    mapped_sources = {m.source_field for m in existing}
    mapped_columns = {m.destination_column.lower() for m in existing}

    result = list(existing)
    for field in source_fields:
        if field in mapped_sources:
            continue
        match = next(
            (
                c
                for c in columns
                if c.name.lower() == field.lower()
                and c.name.lower() not in mapped_columns
            ),
            None,
        )
        if match is None:
            continue
        result.append(
            FieldMapping(
                source_field=field,
                destination_column=match.name,
                data_type=match.data_type,
                null_handling="skip" if match.is_nullable else "required",
            )
        )
        mapped_sources.add(field)
        mapped_columns.add(match.name.lower())
    return result
