"""Type coercion of mapped values to a declared data type."""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from ..errors import MappingError
from .transforms import parse_datetime

logger = logging.getLogger(__name__)

_FAMILY_ALIASES: Dict[str, str] = {
    # application field types
    "string": "string",
    "number": "number",
    "integer": "integer",
    "boolean": "boolean",
    "json": "json",
    "date": "date",
    "datetime": "datetime",
    # SQL / HANA column types
    "char": "string",
    "nchar": "string",
    "varchar": "string",
    "nvarchar": "string",
    "character": "string",
    "character varying": "string",
    "text": "string",
    "clob": "string",
    "nclob": "string",
    "alphanum": "string",
    "shorttext": "string",
    "int": "integer",
    "tinyint": "integer",
    "smallint": "integer",
    "mediumint": "integer",
    "bigint": "integer",
    "serial": "integer",
    "bigserial": "integer",
    "decimal": "number",
    "smalldecimal": "number",
    "numeric": "number",
    "float": "number",
    "double": "number",
    "double precision": "number",
    "real": "number",
    "money": "number",
    "bool": "boolean",
    "bit": "boolean",
    "jsonb": "json",
    "timestamp": "datetime",
    "timestamptz": "datetime",
    "timestamp with time zone": "datetime",
    "timestamp without time zone": "datetime",
    "seconddate": "datetime",
}

_TRUE = {"true", "1", "yes", "y", "on"}
_FALSE = {"false", "0", "no", "n", "off"}
_PARAMS_RE = re.compile(r"\(.*?\)")


def normalize_data_type(data_type: Optional[str]) -> Optional[str]:
    """Map an application or SQL type name to a coercion family.

    Returns ``None`` for unrecognised names; such values pass through as-is.
    """
    if not data_type:
        return None
    name = _PARAMS_RE.sub("", data_type).strip().lower()
    name = name.replace(" unsigned", "").strip()
    if name in _FAMILY_ALIASES:
        return _FAMILY_ALIASES[name]
    first = name.split(" ", 1)[0]
    return _FAMILY_ALIASES.get(first)


def _to_string(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_number(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


def _to_integer(value: Any) -> int:
    number = _to_number(value)
    if isinstance(number, float):
        if not number.is_integer():
            raise ValueError(f"{value!r} is not an integer")
        return int(number)
    return number


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"{value!r} is not a boolean")


def _to_json(value: Any) -> str:
    if isinstance(value, str):
        json.loads(value)
        return value
    return json.dumps(value)


def _to_date(value: Any) -> str:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    return parse_datetime(value).date().isoformat()


def _to_datetime_text(value: Any) -> str:
    return parse_datetime(value).isoformat()


_COERCERS: Dict[str, Callable[[Any], Any]] = {
    "string": _to_string,
    "number": _to_number,
    "integer": _to_integer,
    "boolean": _to_boolean,
    "json": _to_json,
    "date": _to_date,
    "datetime": _to_datetime_text,
}


def coerce(value: Any, data_type: Optional[str], field: str = "") -> Any:
    """Coerce ``value`` to ``data_type``.

    Raises:
        MappingError: ``TypeCoercion`` when the value does not fit the type.
    """
    family = normalize_data_type(data_type)
    if family is None:
        if data_type:
            logger.debug(f"No coercion for data type '{data_type}' on field '{field}'")
        return value
    try:
        return _COERCERS[family](value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise MappingError(
            MappingError.TYPE_COERCION,
            field,
            f"cannot coerce {value!r} to {data_type} for field '{field}'",
        ) from exc
