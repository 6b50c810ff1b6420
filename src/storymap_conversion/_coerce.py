"""Total accessors for loosely-typed legacy JSON."""

from __future__ import annotations

from typing import Any, Iterable


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def as_str(value: Any, default: str = "") -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def first_str(mapping: Any, keys: Iterable[str], default: str = "") -> str:
    """First non-blank string (or number) under any of `keys`."""
    data = as_dict(mapping)
    for key in keys:
        text = as_str(data.get(key)).strip()
        if text:
            return text
    return default


def dig(value: Any, *path: str) -> Any:
    """Walk nested dicts; None as soon as a step is missing."""
    current = value
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
