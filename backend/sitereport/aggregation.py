from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Generic, Sequence, TypeVar

T = TypeVar("T")


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().rstrip("%").replace(",", ".").strip()
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def clamp_percentage(value: Any) -> float:
    """Clamp numeric or numeric-like input to [0, 100]; anything else is 0."""
    number = _to_float(value)
    if number is None:
        return 0.0
    return clamp(number, 0.0, 100.0)


def coerce_amount(value: Any) -> float:
    number = _to_float(value)
    if number is None or math.isinf(number):
        return 0.0
    return number


@dataclass
class Pairing(Generic[T]):
    pairs: list[tuple[T, T]]
    unpaired: T | None = None


def pair_consecutive(items: Sequence[T]) -> Pairing[T]:
    """Group items 0+1, 2+3, ... in order. A trailing odd item is returned separately."""
    pairs = [(items[index], items[index + 1]) for index in range(0, len(items) - 1, 2)]
    unpaired = items[-1] if len(items) % 2 else None
    return Pairing(pairs=pairs, unpaired=unpaired)
