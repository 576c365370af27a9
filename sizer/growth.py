"""
Static growth-rate projections of tenant storage.

There is no historical store: projections are fixed multipliers applied to
the current total, one per scenario rate.
"""
from typing import Iterable

from .constants import BASE_GROWTH_RATES, DEFAULT_ANNUAL_GROWTH
from .models import GrowthProjection
from .utils import round_half_away


def project_growth(
    current_gb: float,
    custom_rate: float = DEFAULT_ANNUAL_GROWTH,
    base_rates: Iterable[float] = BASE_GROWTH_RATES,
) -> GrowthProjection:
    """
    Project storage for the built-in rates plus one operator-supplied rate.

    projected = current * (1 + rate / 100), rounded to 2 decimals.
    Rates are applied in order (built-ins, then custom); when the custom rate
    equals a built-in one the later entry overwrites it, leaving a single
    mapping entry.

    Raises:
        ValueError: If current_gb is negative or a rate is below -100%
    """
    if current_gb < 0:
        raise ValueError(f"Current storage cannot be negative: {current_gb}")

    projections = {}
    for rate in list(base_rates) + [custom_rate]:
        if rate < -100:
            raise ValueError(f"Growth rate must be >= -100%: {rate}")
        projections[rate] = round_half_away(current_gb * (1 + rate / 100), 2)

    return GrowthProjection(current_gb=round_half_away(current_gb, 2), projections=projections)
