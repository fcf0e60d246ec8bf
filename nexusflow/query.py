"""Query synthesis for SQL and SAP HANA destinations.

Statements are produced from a table target, the resolved columns of one
record and an operation. Column ordering follows the mapping order and is
shared by every dialect; only identifier quoting and the upsert form differ.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from .contracts import Dialect, QueryType
from .errors import ConfigError, MappingError
from .mapping.engine import ResolvedField

PLACEHOLDER = "?"

KEYED_OPERATIONS = ("update", "delete", "upsert")


class TableTarget(BaseModel):
    """Where a statement writes to."""

    model_config = ConfigDict(frozen=True)

    dialect: Dialect = "ansi"
    table: str
    table_schema: Optional[str] = None


class Statement(BaseModel):
    """Parameterized statement text with its bound values."""

    model_config = ConfigDict(frozen=True)

    text: str
    params: Tuple[Any, ...] = ()


def quote_identifier(name: str, dialect: Dialect) -> str:
    if dialect == "mysql":
        return "`" + name.replace("`", "``") + "`"
    return '"' + name.replace('"', '""') + '"'


def qualified_table(target: TableTarget) -> str:
    """Render the table reference for ``target``.

    HANA tables are schema-qualified and quoted. Other dialects use the
    table as authored, which may already carry a schema prefix.
    """
    if target.dialect == "hana":
        table = quote_identifier(target.table, "hana")
        if target.table_schema:
            return f"{quote_identifier(target.table_schema, 'hana')}.{table}"
        return table
    if target.table_schema:
        return f"{target.table_schema}.{target.table}"
    return target.table


def check_operation(
    operation: QueryType,
    dialect: Dialect,
    primary_key: Optional[str],
    field: str = "queryType",
) -> None:
    """Raise ``ConfigError`` if ``operation`` cannot be synthesized."""
    if operation in KEYED_OPERATIONS and not primary_key:
        raise ConfigError.single(
            "MissingPrimaryKey",
            field,
            f"'{operation}' requires a primary key column",
        )
    if operation == "select" and dialect == "hana":
        raise ConfigError.single(
            "UnsupportedOperation",
            field,
            "'select' is only available for database destinations",
        )


def _pk_value(fields: Sequence[ResolvedField], primary_key: str) -> Any:
    for field in fields:
        if field.column == primary_key:
            return field.value
    raise MappingError(
        MappingError.MISSING_REQUIRED_FIELD,
        primary_key,
        f"no value for primary key column '{primary_key}'",
    )


def _insert(table: str, cols: Sequence[str], fields: Sequence[ResolvedField]) -> Statement:
    placeholders = ",".join(PLACEHOLDER for _ in cols)
    text = f"INSERT INTO {table} ({','.join(cols)}) VALUES ({placeholders})"
    return Statement(text=text, params=tuple(f.value for f in fields))


def _upsert(
    target: TableTarget,
    table: str,
    cols: Sequence[str],
    fields: Sequence[ResolvedField],
    primary_key: str,
) -> Statement:
    _pk_value(fields, primary_key)
    if target.dialect == "hana":
        placeholders = ",".join(PLACEHOLDER for _ in cols)
        text = (
            f"UPSERT {table} ({','.join(cols)}) VALUES ({placeholders}) "
            "WITH PRIMARY KEY"
        )
        return Statement(text=text, params=tuple(f.value for f in fields))

    insert = _insert(table, cols, fields)
    updatable = [
        quote_identifier(f.column, target.dialect)
        for f in fields
        if f.column != primary_key
    ]
    if target.dialect == "mysql":
        if updatable:
            sets = ", ".join(f"{c} = VALUES({c})" for c in updatable)
        else:
            pk = quote_identifier(primary_key, "mysql")
            sets = f"{pk} = {pk}"
        text = f"{insert.text} ON DUPLICATE KEY UPDATE {sets}"
    else:
        conflict = quote_identifier(primary_key, target.dialect)
        if updatable:
            sets = ", ".join(f"{c} = EXCLUDED.{c}" for c in updatable)
            text = f"{insert.text} ON CONFLICT ({conflict}) DO UPDATE SET {sets}"
        else:
            text = f"{insert.text} ON CONFLICT ({conflict}) DO NOTHING"
    return Statement(text=text, params=insert.params)


def synthesize(
    target: TableTarget,
    fields: Sequence[ResolvedField],
    operation: QueryType,
    primary_key: Optional[str] = None,
    custom_query: Optional[str] = None,
) -> Statement:
    """Build the statement for one record.

    ``fields`` are the resolved columns in mapping order; columns skipped by
    null handling are simply absent, so no placeholder is left dangling.

    Raises:
        ConfigError: missing primary key or unsupported operation.
        MappingError: the primary key has no value in ``fields``.
    """
    check_operation(operation, target.dialect, primary_key)
    table = qualified_table(target)

    if operation == "select":
        if custom_query and custom_query.strip():
            return Statement(text=custom_query)
        return Statement(text=f"SELECT * FROM {table}")

    cols = [quote_identifier(f.column, target.dialect) for f in fields]

    if operation == "insert":
        return _insert(table, cols, fields)

    if operation == "upsert":
        return _upsert(target, table, cols, fields, primary_key)

    pk_value = _pk_value(fields, primary_key)
    where = f"{quote_identifier(primary_key, target.dialect)} = {PLACEHOLDER}"

    if operation == "delete":
        return Statement(text=f"DELETE FROM {table} WHERE {where}", params=(pk_value,))

    updates = [f for f in fields if f.column != primary_key]
    if not updates:
        raise MappingError(
            MappingError.MISSING_REQUIRED_FIELD,
            primary_key,
            "update has no columns to set besides the primary key",
        )
    sets = ", ".join(
        f"{quote_identifier(f.column, target.dialect)} = {PLACEHOLDER}" for f in updates
    )
    return Statement(
        text=f"UPDATE {table} SET {sets} WHERE {where}",
        params=tuple(f.value for f in updates) + (pk_value,),
    )
