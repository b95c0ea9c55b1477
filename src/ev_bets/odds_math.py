"""Shared odds conversion and de-vig helpers."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

MIN_LOGIT_PROBABILITY = 0.001
MAX_LOGIT_PROBABILITY = 0.999


def is_valid_american_price(price: Any) -> bool:
    """Return True when `price` is a usable American price (<= -100 or >= +100)."""
    if isinstance(price, bool):
        return False
    if isinstance(price, float):
        if not math.isfinite(price):
            return False
    elif not isinstance(price, int):
        return False
    return price <= -100 or price >= 100


def american_to_decimal(american: float) -> float:
    """Convert American odds to decimal odds.

    Zero is not a valid American price; callers validate at the
    normalization boundary with `is_valid_american_price`.
    """
    if american > 0:
        return (american / 100.0) + 1.0
    return (100.0 / abs(american)) + 1.0


def decimal_to_american(decimal_odds: float | None) -> int | None:
    """Convert decimal odds to American odds."""
    if decimal_odds is None or decimal_odds <= 1.0:
        return None
    if decimal_odds >= 2.0:
        return int(round((decimal_odds - 1.0) * 100.0))
    return int(round(-100.0 / (decimal_odds - 1.0)))


def decimal_to_implied_probability(decimal_odds: float) -> float:
    """Convert decimal odds to implied probability."""
    return 1.0 / decimal_odds


def implied_probability_to_decimal(probability: float) -> float:
    """Convert implied probability to decimal odds."""
    return 1.0 / probability


def probability_to_logit(probability: float) -> float:
    """Map a probability into log-odds space, clamped away from 0 and 1."""
    clamped = max(MIN_LOGIT_PROBABILITY, min(MAX_LOGIT_PROBABILITY, probability))
    return math.log(clamped / (1.0 - clamped))


def logit_to_probability(logit: float) -> float:
    """Map a log-odds value back to a probability."""
    return 1.0 / (1.0 + math.exp(-logit))


def overround(probabilities: Sequence[float]) -> float:
    """Total implied probability across every outcome of one market."""
    return float(sum(probabilities))


def devig_two_sided(first: float, second: float) -> tuple[float, float]:
    """Remove margin from a two-outcome market by proportional scaling.

    Under-round inputs (sum <= 1) are returned unchanged.
    """
    total = first + second
    if total <= 1.0:
        return first, second
    return first / total, second / total


def normalize_multi_way(probabilities: Sequence[float]) -> list[float]:
    """Scale every outcome of an n-way market by the market overround."""
    total = overround(probabilities)
    if total <= 1.0:
        return list(probabilities)
    return [value / total for value in probabilities]
