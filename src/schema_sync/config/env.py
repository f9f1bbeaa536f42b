"""Typed environment variable parsing helpers."""

import os
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

_TRUTHY = frozenset({"true", "1", "yes", "on"})
_FALSY = frozenset({"false", "0", "no", "off", ""})


def _read(
    name: str, default: Optional[T], required: bool, parse: Callable[[str], T], kind: str
) -> Optional[T]:
    raw = os.getenv(name)
    if raw is None:
        if required:
            raise KeyError(f"Environment variable '{name}' is required but not set.")
        return default
    try:
        return parse(raw)
    except ValueError:
        raise ValueError(f"Environment variable '{name}' must be {kind}, got '{raw}'.") from None


def get_env_str(name: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    return _read(name, default, required, str, "a string")


def get_env_int(name: str, default: Optional[int] = None, required: bool = False) -> Optional[int]:
    return _read(name, default, required, int, "an integer")


def get_env_float(
    name: str, default: Optional[float] = None, required: bool = False
) -> Optional[float]:
    return _read(name, default, required, float, "a float")


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(raw)


def get_env_bool(
    name: str, default: Optional[bool] = None, required: bool = False
) -> Optional[bool]:
    """Get an environment variable as a boolean.

    Truthy: true, 1, yes, on
    Falsey: false, 0, no, off, (empty string)
    """
    return _read(name, default, required, _parse_bool, "a boolean")


def get_env_code(name: str, default: str) -> str:
    """Get a tenant code, stripped and upper-cased."""
    return (get_env_str(name, default) or "").strip().upper()
