"""Fair-probability estimation over a panel of sportsbook quotes.

Every method is a pure function of one `SelectionGroup` and the engine
config. Outlier annotations come back on a copy of the group inside the
returned `FairOddsEstimate`; the input group is never modified.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace

from ev_bets.errors import UnknownMethodError
from ev_bets.models import (
    FairOddsEstimate,
    FairOddsMethod,
    FairOddsResult,
    SelectionGroup,
)
from ev_bets.odds_math import implied_probability_to_decimal
from ev_bets.outliers import detect_outliers, mean, median
from ev_bets.runtime_config import EngineConfig

logger = logging.getLogger(__name__)

SHARP_MISSING_REASON = "sharp book does not quote this market"
ALL_OUTLIERS_REASON = "All books marked as outliers, using median"

MethodImpl = Callable[[SelectionGroup, EngineConfig], FairOddsEstimate]


@dataclass(frozen=True)
class FairOddsPanel:
    """Results of every configured method for one group.

    `group` carries the outlier annotations of the trimmed-mean run when that
    method ran, otherwise it is the input group unchanged.
    """

    results: Mapping[FairOddsMethod, FairOddsResult]
    group: SelectionGroup


def _fair_decimal(probability: float) -> float:
    if probability <= 0:
        return 0.0
    return implied_probability_to_decimal(probability)


def _insufficient_books(
    group: SelectionGroup, method: FairOddsMethod, config: EngineConfig
) -> FairOddsEstimate:
    count = group.book_count
    result = FairOddsResult(
        method=method,
        fair_probability=0.0,
        fair_decimal_odds=0.0,
        books_used=count,
        books_excluded=0,
        is_fallback=True,
        fallback_reason=f"Insufficient books ({count} < {config.min_books_for_fair_odds})",
    )
    return FairOddsEstimate(result=result, group=group)


def _trimmed_mean_prob(group: SelectionGroup, config: EngineConfig) -> FairOddsEstimate:
    probabilities = group.implied_probabilities
    scan = detect_outliers(probabilities, config.outlier_threshold)
    annotated = group.with_outliers(scan.flags)
    kept = [
        probability
        for probability, flagged in zip(probabilities, scan.flags, strict=True)
        if not flagged
    ]

    if not kept:
        fair_probability = median(probabilities)
        logger.debug("%s: every book flagged as outlier, using median", group.selection_key)
        result = FairOddsResult(
            method=FairOddsMethod.TRIMMED_MEAN_PROB,
            fair_probability=fair_probability,
            fair_decimal_odds=_fair_decimal(fair_probability),
            books_used=len(probabilities),
            books_excluded=0,
            is_fallback=True,
            fallback_reason=ALL_OUTLIERS_REASON,
        )
        return FairOddsEstimate(result=result, group=annotated)

    fair_probability = mean(kept)
    result = FairOddsResult(
        method=FairOddsMethod.TRIMMED_MEAN_PROB,
        fair_probability=fair_probability,
        fair_decimal_odds=_fair_decimal(fair_probability),
        books_used=len(kept),
        books_excluded=scan.count,
        outlier_book_ids=tuple(group.entries[index].sportsbook_id for index in scan.indices),
    )
    return FairOddsEstimate(result=result, group=annotated)


def _sharp_book_reference(group: SelectionGroup, config: EngineConfig) -> FairOddsEstimate:
    sharp = group.sharp_entry()
    if sharp is None:
        fallback = _trimmed_mean_prob(group, config)
        result = replace(
            fallback.result,
            method=FairOddsMethod.SHARP_BOOK_REFERENCE,
            is_fallback=True,
            fallback_reason=SHARP_MISSING_REASON,
        )
        return FairOddsEstimate(result=result, group=fallback.group)

    # Single-sided de-vig against an assumed overround; the opposing side of
    # the market is not looked up.
    fair_probability = sharp.implied_probability / config.sharp_overround
    result = FairOddsResult(
        method=FairOddsMethod.SHARP_BOOK_REFERENCE,
        fair_probability=fair_probability,
        fair_decimal_odds=_fair_decimal(fair_probability),
        books_used=1,
        books_excluded=group.book_count - 1,
    )
    return FairOddsEstimate(result=result, group=group)


METHOD_REGISTRY: Mapping[FairOddsMethod, MethodImpl] = {
    FairOddsMethod.TRIMMED_MEAN_PROB: _trimmed_mean_prob,
    FairOddsMethod.SHARP_BOOK_REFERENCE: _sharp_book_reference,
}


def _resolve_method(method: FairOddsMethod | str) -> FairOddsMethod:
    if isinstance(method, FairOddsMethod):
        return method
    try:
        return FairOddsMethod(str(method).strip().upper())
    except ValueError as exc:
        raise UnknownMethodError(f"unknown fair odds method: {method}") from exc


def calculate_fair_odds(
    group: SelectionGroup,
    method: FairOddsMethod | str,
    config: EngineConfig,
) -> FairOddsEstimate:
    """Run exactly one estimation method against `group`."""
    resolved = _resolve_method(method)
    impl = METHOD_REGISTRY.get(resolved)
    if impl is None:
        raise UnknownMethodError(f"fair odds method not registered: {resolved}")
    if group.book_count < config.min_books_for_fair_odds:
        return _insufficient_books(group, resolved, config)
    return impl(group, config)


def calculate_all_fair_odds(group: SelectionGroup, config: EngineConfig) -> FairOddsPanel:
    """Run every configured method against the same input group."""
    results: dict[FairOddsMethod, FairOddsResult] = {}
    annotated = group
    for method in config.methods:
        estimate = calculate_fair_odds(group, method, config)
        results[method] = estimate.result
        if method is FairOddsMethod.TRIMMED_MEAN_PROB:
            annotated = estimate.group
    return FairOddsPanel(results=results, group=annotated)
