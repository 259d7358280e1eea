"""Conversions between a grade's percentage and its error count."""

from __future__ import annotations

import math
from typing import Iterable, Optional


def round_half(value: float) -> float:
    """Round to the nearest 0.5, halves going up (2.25 -> 2.5)."""
    return math.floor(value * 2 + 0.5) / 2


def round_tenth(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return math.floor(value * 10 + 0.5) / 10


def errors_from_percentage(percentage: float, points: int) -> float:
    return round_half(points * (1 - percentage / 100))


def percentage_from_errors(errors: float, points: int) -> float:
    if points <= 0:
        raise ValueError("points must be positive")
    return round_half((points - errors) / points * 100)


def resolve_grade(
    lesson_points: int,
    percentage: Optional[float] = None,
    errors: Optional[float] = None,
    points: Optional[int] = None,
) -> tuple[float, float, int]:
    """Return `(percentage, errors, points)` from whichever side was given.

    A percentage wins when both are supplied. Errors are counted against
    `points` when given, otherwise against the lesson's own total.
    """
    if percentage is not None:
        if not 0 <= percentage <= 100:
            raise ValueError("percentage must be between 0 and 100")
        return percentage, errors_from_percentage(percentage, lesson_points), lesson_points
    if errors is not None:
        total = points if points is not None else lesson_points
        if errors < 0:
            raise ValueError("errors must be >= 0")
        if errors > total:
            raise ValueError("errors cannot exceed points")
        return percentage_from_errors(errors, total), errors, total
    raise ValueError("Must provide either percentage or errors")


def mean(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)
