"""Pure statistics helpers shared by the rollup engine and the calculator.

"No data" is always None here, never 0. Ratios with a zero denominator fall back
to the default the caller supplies.
"""

import math
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence


def round_half_up(value: float, digits: int = 0) -> float:
    """Round to nearest, ties toward +infinity (2.5 -> 3, -12.25 -> -12.2).

    Not banker's rounding.
    """
    quantum = Decimal(1).scaleb(-digits)
    rounding = ROUND_HALF_UP if value >= 0 else ROUND_HALF_DOWN
    return float(Decimal(repr(value)).quantize(quantum, rounding=rounding))


def percentile(sorted_values: Sequence[int], pct: float) -> Optional[int]:
    """Nearest-rank percentile over an ascending sequence.

    index = ceil(pct / 100 * n) - 1, clamped to [0, n - 1].
    """
    if not sorted_values:
        return None
    index = math.ceil(pct / 100 * len(sorted_values)) - 1
    index = min(max(index, 0), len(sorted_values) - 1)
    return sorted_values[index]


def mean_ms(values: Sequence[int]) -> Optional[int]:
    if not values:
        return None
    return int(round_half_up(sum(values) / len(values)))


def weighted_average(pairs: Iterable[tuple[Optional[float], int]]) -> Optional[float]:
    """Σ(value × weight) / Σ(weight) over pairs whose value is not None."""
    total = 0.0
    total_weight = 0
    for value, weight in pairs:
        if value is None:
            continue
        total += value * weight
        total_weight += weight
    if total_weight <= 0:
        return None
    return total / total_weight


def percentage(part: float, whole: float, default: Optional[float] = 0.0) -> Optional[float]:
    if not whole:
        return default
    return part / whole * 100


def growth_percent(current: float, previous: float) -> float:
    """Period-over-period growth; 0 when there is nothing to compare against."""
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100
