"""Numeric coercion helpers for loosely-typed escape-room data."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any, Union

Number = Union[int, float]


def to_finite_number(value: Any) -> Number | None:
    """Return ``value`` as a finite number, or ``None`` when it is not one.

    Integers pass through untouched, floats must be finite and numeric strings
    are parsed. Booleans and everything else are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def coerce_index(value: Any, default: Number, minimum: int) -> int:
    """Floor ``value`` and clamp it to ``minimum``.

    Missing, non-numeric and non-positive values fall back to ``default``
    before flooring.
    """
    number = to_finite_number(value)
    if number is None or number <= 0:
        number = default
    return max(minimum, math.floor(number))


def non_negative_int(value: Any, default: int) -> int:
    """Floor ``value`` and clamp it at zero, using ``default`` when non-numeric."""
    number = to_finite_number(value)
    if number is None:
        return max(0, default)
    return max(0, math.floor(number))


def normalize_stage_indices(values: Any) -> list[int]:
    """Return the sorted, de-duplicated stage indices (>= 1) found in ``values``."""
    if isinstance(values, (str, bytes, Mapping)) or not isinstance(values, Iterable):
        return []
    indices: set[int] = set()
    for value in values:
        number = to_finite_number(value)
        if number is None or number < 1:
            continue
        indices.add(math.floor(number))
    return sorted(indices)


__all__ = [
    "coerce_index",
    "non_negative_int",
    "normalize_stage_indices",
    "to_finite_number",
]
