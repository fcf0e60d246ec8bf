"""
Transform catalog for field mappings.

Each transform is a pure function ``(value, param) -> value``. Unknown names
are rejected when a workflow is compiled, never while a record is in flight.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from ..errors import MappingError

Transform = Callable[[Any, Optional[str]], Any]

TRANSFORMS: Dict[str, Transform] = {}

# Token style accepted by the editor, translated to strftime directives.
_DATE_TOKENS = [
    ("YYYY", "%Y"),
    ("YY", "%y"),
    ("MM", "%m"),
    ("DD", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
]
_DATE_TOKEN_RE = re.compile("|".join(token for token, _ in _DATE_TOKENS))

# Epoch values above this are taken as milliseconds.
_EPOCH_MS_THRESHOLD = 1e12


def register_transform(name: str) -> Callable[[Transform], Transform]:
    """Decorator adding a transform to ``TRANSFORMS`` under ``name``."""

    def decorator(func: Transform) -> Transform:
        TRANSFORMS[name] = func
        return func

    return decorator


def is_known_transform(name: str) -> bool:
    return name in TRANSFORMS


def apply_transform(
    name: str, value: Any, param: Optional[str] = None, field: str = ""
) -> Any:
    """Apply transform ``name`` to ``value``.

    Raises:
        KeyError: if ``name`` is not registered. Compiled workflows never
            reach this; it signals IR that bypassed validation.
        MappingError: if the value cannot be transformed.
    """
    func = TRANSFORMS[name]
    try:
        return func(value, param)
    except (TypeError, ValueError, InvalidOperation, OverflowError) as exc:
        raise MappingError(
            MappingError.TYPE_COERCION,
            field,
            f"transform '{name}' failed for field '{field}': {exc}",
        ) from exc


@register_transform("uppercase")
def _uppercase(value: Any, param: Optional[str]) -> str:
    return str(value).upper()


@register_transform("lowercase")
def _lowercase(value: Any, param: Optional[str]) -> str:
    return str(value).lower()


@register_transform("trim")
def _trim(value: Any, param: Optional[str]) -> str:
    return str(value).strip()


@register_transform("round")
def _round(value: Any, param: Optional[str]) -> Any:
    if isinstance(value, bool):
        raise TypeError("cannot round a boolean")
    digits = int(param) if param not in (None, "") else 0
    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    if digits <= 0:
        return int(rounded)
    return float(rounded)


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > _EPOCH_MS_THRESHOLD else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _strftime_pattern(param: Optional[str]) -> str:
    if not param:
        return "%Y-%m-%d"
    if "%" in param:
        return param
    tokens = dict(_DATE_TOKENS)
    return _DATE_TOKEN_RE.sub(lambda m: tokens[m.group(0)], param)


@register_transform("date_format")
def _date_format(value: Any, param: Optional[str]) -> str:
    return parse_datetime(value).strftime(_strftime_pattern(param))


@register_transform("prefix")
def _prefix(value: Any, param: Optional[str]) -> str:
    return f"{param or ''}{value}"


@register_transform("suffix")
def _suffix(value: Any, param: Optional[str]) -> str:
    return f"{value}{param or ''}"
