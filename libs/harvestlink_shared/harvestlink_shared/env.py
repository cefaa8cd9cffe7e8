from __future__ import annotations

import os
from typing import Iterable, List

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _raw(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def env_bool(name: str, *, default: bool = False) -> bool:
    """Boolean setting; unparseable values raise instead of silently defaulting."""
    value = _raw(name)
    if value is None:
        return default
    if value.lower() in _TRUE_VALUES:
        return True
    if value.lower() in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {name!r}: {value!r}")


def env_int(name: str, *, default: int, minimum: int | None = None) -> int:
    value = _raw(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"Invalid integer for {name!r}: {value!r}") from None
    if minimum is not None and parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def env_float(name: str, *, default: float, minimum: float | None = None) -> float:
    value = _raw(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ValueError(f"Invalid number for {name!r}: {value!r}") from None
    if minimum is not None and parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def env_list(name: str, *, default: Iterable[str] | None = None, separator: str = ",") -> List[str]:
    """Comma separated list; blank items are dropped. Unset means ``default``."""
    value = os.getenv(name)
    if value is None:
        return list(default or [])
    return [item.strip() for item in value.split(separator) if item.strip()]


__all__ = ["env_bool", "env_int", "env_float", "env_list"]
