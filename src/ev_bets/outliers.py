"""Robust summary statistics and MAD-based outlier detection.

Distances are measured in scaled MAD (median absolute deviation) units
around the sample median. Values are implied probabilities in practice,
but nothing here depends on that.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from ev_bets.errors import EmptySampleError

T = TypeVar("T")

DEFAULT_OUTLIER_THRESHOLD = 3.5
MIN_OUTLIER_SAMPLE = 3
# Makes MAD comparable to a standard deviation for normally distributed data.
MAD_SCALE = 1.4826


@dataclass(frozen=True)
class OutlierScan:
    """Outlier flags for one sample, as indices and as a parallel mask."""

    indices: tuple[int, ...]
    flags: tuple[bool, ...]

    @property
    def count(self) -> int:
        return len(self.indices)


def median(values: Sequence[float]) -> float:
    if not values:
        raise EmptySampleError("cannot calculate median of empty sample")
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2.0


def mean(values: Sequence[float]) -> float:
    if not values:
        raise EmptySampleError("cannot calculate mean of empty sample")
    return sum(values) / len(values)


def mad(values: Sequence[float]) -> float:
    """Median absolute deviation from the median."""
    center = median(values)
    return median([abs(value - center) for value in values])


def _no_outliers(size: int) -> OutlierScan:
    return OutlierScan(indices=(), flags=(False,) * size)


def detect_outliers(
    values: Sequence[float], threshold: float = DEFAULT_OUTLIER_THRESHOLD
) -> OutlierScan:
    """Flag values whose scaled distance from the median exceeds `threshold`.

    Samples smaller than three, and samples with zero spread, never have
    outliers.
    """
    if len(values) < MIN_OUTLIER_SAMPLE:
        return _no_outliers(len(values))

    center = median(values)
    spread = mad(values)
    if spread == 0:
        return _no_outliers(len(values))

    scaled = spread * MAD_SCALE
    flags = tuple(abs(value - center) / scaled > threshold for value in values)
    indices = tuple(index for index, flagged in enumerate(flags) if flagged)
    return OutlierScan(indices=indices, flags=flags)


def trimmed_mean(values: Sequence[float], threshold: float = DEFAULT_OUTLIER_THRESHOLD) -> float:
    """Mean of the non-outlier values, falling back to the median if none survive."""
    if not values:
        raise EmptySampleError("cannot calculate trimmed mean of empty sample")
    if len(values) < MIN_OUTLIER_SAMPLE:
        return mean(values)

    scan = detect_outliers(values, threshold)
    kept = [value for value, flagged in zip(values, scan.flags, strict=True) if not flagged]
    if not kept:
        return median(values)
    return mean(kept)


def flag_items(
    items: Sequence[T],
    key: Callable[[T], float],
    threshold: float = DEFAULT_OUTLIER_THRESHOLD,
) -> list[tuple[T, bool]]:
    """Pair each item with its outlier flag, scoring items by `key`."""
    scan = detect_outliers([key(item) for item in items], threshold)
    return list(zip(items, scan.flags, strict=True))
