"""Null-safe numeric coercion and derived-metric math.

clickhouse hands back UInt64 sums as ints, Float64 as floats, and - through
some proxies and for Nullable/Decimal columns - numbers as strings. every
counter that reaches a response goes through safe_number first so the
dashboard never sees NaN, null or a string where it expects a number.

the Count / Amount / Label annotated types wire the same coercion into the
pydantic result models, which is where raw rows actually get validated.
"""

import math
from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import BeforeValidator
from pydantic.alias_generators import to_camel


def safe_number(value: Any) -> int | float:
    """Coerce anything to a finite number, 0 when that isn't possible.

    total over arbitrary input: None, unparseable strings, NaN and +-inf
    all come back as 0.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        value = text

    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0

    if not math.isfinite(number):
        return 0
    return number


def safe_rate(numerator: float, denominator: float) -> float:
    """numerator / denominator rounded to 4 places, exactly 0 for a zero denominator."""
    if denominator == 0:
        return 0
    return round(numerator / denominator, 4)


def percent_change(current: float, previous: float) -> float:
    """Percent change rounded to 2 places; 0 when there is nothing to compare against."""
    if previous == 0:
        return 0
    return round((current - previous) / previous * 100, 2)


def _to_count(value: Any) -> int:
    number = safe_number(value)
    return int(number)


def _to_amount(value: Any) -> float:
    return float(safe_number(value))


def _to_label(value: Any) -> str:
    # display strings: timestamps, dimension values, ids
    if value is None:
        return ""
    return str(value)


def _to_labels(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None]


Count = Annotated[int, BeforeValidator(_to_count)]
Amount = Annotated[float, BeforeValidator(_to_amount)]
Label = Annotated[str, BeforeValidator(_to_label)]
Labels = Annotated[list[str], BeforeValidator(_to_labels)]


def metric_changes(
    current: Mapping[str, float], previous: Mapping[str, float], keys: list[str]
) -> dict[str, dict[str, float]]:
    """Absolute and percent change per metric, keyed by the camelCase name."""
    changes = {}
    for key in keys:
        cur = safe_number(current.get(key))
        prev = safe_number(previous.get(key))
        absolute = cur - prev
        if isinstance(absolute, float):
            absolute = round(absolute, 4)
        changes[to_camel(key)] = {"absolute": absolute, "percent": percent_change(cur, prev)}
    return changes
