"""Lenient coercion of provider JSON values."""

from __future__ import annotations

import math
from typing import Any

_TRUE = {"1", "true", "yes"}
_FALSE = {"0", "false", "no"}


def flag(value: Any) -> bool | None:
    """`"1"`/`"true"`/`"yes"`/1/True -> True, their opposites -> False, anything else -> None."""

    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    return None


def num(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def integer(value: Any) -> int | None:
    parsed = num(value)
    return int(parsed) if parsed is not None else None


def text(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def first(mapping: dict[str, Any], *keys: str) -> Any:
    """Value of the first present, non-null key (snake_case / camelCase variants)."""

    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


__all__ = ["first", "flag", "integer", "num", "text"]
