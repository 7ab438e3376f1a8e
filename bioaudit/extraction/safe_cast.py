"""Type-checked readers for loosely typed JSON coming back from external services.

Each reader returns its default when the runtime type is wrong. Values are
never coerced: ``"12.5"`` is not a number and ``1`` is not a boolean.
"""
from __future__ import annotations

import math
from typing import Any


def safe_number(value: Any, default: float | None = None) -> float | None:
    # bool is a subclass of int in Python; JSON true/false must not read as 1/0.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(value):  # NaN, or 1e400 parsed as inf
        return default
    return value


def safe_string(value: Any, default: str | None = None) -> str | None:
    if not isinstance(value, str):
        return default
    value = value.strip()
    return value or default


def safe_bool(value: Any, default: bool | None = None) -> bool | None:
    return value if isinstance(value, bool) else default


def safe_array(value: Any) -> list:
    return list(value) if isinstance(value, list) else []


def safe_mapping(value: Any) -> dict | None:
    return value if isinstance(value, dict) else None


def safe_string_list(value: Any) -> list[str]:
    return [s for s in (safe_string(v) for v in safe_array(value)) if s is not None]
