"""EV scoring, best-of selection, and explanations for selection groups.

The calculator is policy-free: `calculate_opportunities` keeps the single
best (method, target book) pair whatever its EV, and callers apply the
minimum-EV threshold with `filter_opportunities`.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from ev_bets.fair_odds import FairOddsPanel, calculate_all_fair_odds
from ev_bets.models import (
    BestEV,
    BookOdds,
    EVCalculation,
    EVOpportunity,
    FairOddsMethod,
    FairOddsResult,
    FixtureMeta,
    SelectionGroup,
)
from ev_bets.normalize import SELECTION_KEY_SEPARATOR
from ev_bets.runtime_config import EngineConfig
from ev_bets.time_utils import utc_now

logger = logging.getLogger(__name__)

EV_ABSURDITY_CEILING = 200.0
OPPORTUNITY_ID_LENGTH = 16


@dataclass(frozen=True)
class BookBreakdown:
    """One book's price measured against the winning fair odds."""

    book: BookOdds
    deviation_from_fair: float


def calculate_ev(fair_probability: float, offered_decimal_odds: float) -> float:
    """Expected value in percent of stake; 0 when the probability is unusable."""
    if fair_probability <= 0 or fair_probability >= 1:
        return 0.0
    return ((fair_probability * offered_decimal_odds) - 1.0) * 100.0


def calculate_ev_for_targets(
    group: SelectionGroup,
    fair_odds: FairOddsResult,
    target_book_ids: Sequence[str],
) -> list[EVCalculation]:
    """Score every target book in `group` against one fair-odds result."""
    if fair_odds.fair_probability <= 0:
        return []

    targets = frozenset(target_book_ids)
    calculations: list[EVCalculation] = []
    for entry in group.entries:
        if entry.sportsbook_id not in targets:
            continue
        ev_percent = calculate_ev(fair_odds.fair_probability, entry.decimal_odds)
        if abs(ev_percent) > EV_ABSURDITY_CEILING:
            continue
        calculations.append(
            EVCalculation(
                target_book_id=entry.sportsbook_id,
                target_book_name=entry.sportsbook_name,
                offered_decimal_odds=entry.decimal_odds,
                offered_implied_probability=entry.implied_probability,
                fair_probability=fair_odds.fair_probability,
                fair_decimal_odds=fair_odds.fair_decimal_odds,
                ev_percent=ev_percent,
                method=fair_odds.method,
            )
        )
    return calculations


def opportunity_id(selection_key: str, method: FairOddsMethod, target_book_id: str) -> str:
    """Stable id so re-running an unchanged market updates the same record."""
    raw = SELECTION_KEY_SEPARATOR.join([selection_key, method.value, target_book_id])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:OPPORTUNITY_ID_LENGTH]


def _sorted_book_odds(group: SelectionGroup) -> tuple[BookOdds, ...]:
    books = [BookOdds.from_entry(entry) for entry in group.entries]
    # Targets first, then best price for the bettor; ties keep group order.
    books.sort(key=lambda book: (not book.is_target, -book.decimal_odds))
    return tuple(books)


def _score_panel(
    group: SelectionGroup,
    panel: FairOddsPanel,
    target_book_ids: Sequence[str],
) -> dict[FairOddsMethod, tuple[EVCalculation, ...]]:
    return {
        method: tuple(calculate_ev_for_targets(group, result, target_book_ids))
        for method, result in panel.results.items()
    }


def _best_calculation(
    calculations: Mapping[FairOddsMethod, Sequence[EVCalculation]],
) -> EVCalculation | None:
    best: EVCalculation | None = None
    for calcs in calculations.values():
        for calc in calcs:
            if best is None or calc.ev_percent > best.ev_percent:
                best = calc
    return best


def _latest_timestamp(group: SelectionGroup) -> datetime:
    if not group.entries:
        return utc_now()
    return max(entry.timestamp for entry in group.entries)


def _build_opportunity(
    group: SelectionGroup,
    fixture: FixtureMeta,
    panel: FairOddsPanel,
    calculations: Mapping[FairOddsMethod, tuple[EVCalculation, ...]],
    best_ev: BestEV,
    now: datetime | None,
) -> EVOpportunity:
    return EVOpportunity(
        id=opportunity_id(group.selection_key, best_ev.method, best_ev.target_book_id),
        fixture_id=group.fixture_id,
        sport=fixture.sport,
        league=fixture.league,
        league_name=fixture.league_name,
        home_team=fixture.home_team,
        away_team=fixture.away_team,
        starts_at=fixture.starts_at,
        market=group.market,
        selection=group.selection,
        selection_key=group.selection_key,
        line=group.line,
        player_id=group.player_id,
        player_name=group.player_name,
        best_ev=best_ev,
        calculations=dict(calculations),
        fair_odds=dict(panel.results),
        book_odds=_sorted_book_odds(panel.group),
        book_count=group.book_count,
        timestamp=now or _latest_timestamp(group),
    )


def calculate_opportunities(
    group: SelectionGroup,
    fixture: FixtureMeta,
    config: EngineConfig,
    *,
    target_book_ids: Sequence[str] | None = None,
    now: datetime | None = None,
) -> EVOpportunity | None:
    """Best EV across every method and target book, or None when nothing scores.

    No minimum-EV threshold is applied here. Without `now`, the opportunity
    timestamp is the latest quote timestamp, so identical input gives an
    identical result.
    """
    targets = config.target_book_ids if target_book_ids is None else target_book_ids
    panel = calculate_all_fair_odds(group, config)
    calculations = _score_panel(group, panel, targets)
    best = _best_calculation(calculations)
    if best is None:
        return None
    return _build_opportunity(
        group, fixture, panel, calculations, BestEV.from_calculation(best), now
    )


def calculate_all_bets(
    group: SelectionGroup,
    fixture: FixtureMeta,
    config: EngineConfig,
    *,
    target_book_ids: Sequence[str] | None = None,
    now: datetime | None = None,
) -> EVOpportunity | None:
    """Like `calculate_opportunities`, but keeps selections whose EV was filtered.

    Used for full-market tracking so losing bets can be validated later.
    When no calculation survives, the first target book is scored against
    the first method that produced a probability.
    """
    targets = config.target_book_ids if target_book_ids is None else target_book_ids
    panel = calculate_all_fair_odds(group, config)
    calculations = _score_panel(group, panel, targets)
    best = _best_calculation(calculations)
    if best is not None:
        return _build_opportunity(
            group, fixture, panel, calculations, BestEV.from_calculation(best), now
        )

    usable = next(
        (result for result in panel.results.values() if result.fair_probability > 0), None
    )
    target_set = frozenset(targets)
    first_target = next(
        (entry for entry in group.entries if entry.sportsbook_id in target_set), None
    )
    if usable is None or first_target is None:
        return None

    seeded = BestEV(
        ev_percent=calculate_ev(usable.fair_probability, first_target.decimal_odds),
        target_book_id=first_target.sportsbook_id,
        target_book_name=first_target.sportsbook_name,
        method=usable.method,
        offered_odds=first_target.decimal_odds,
        fair_odds=usable.fair_decimal_odds,
    )
    logger.debug("%s: no EV survived filters, tracking seeded bet", group.selection_key)
    return _build_opportunity(group, fixture, panel, calculations, seeded, now)


def meets_min_ev(opportunity: EVOpportunity, min_ev_percent: float) -> bool:
    ev_percent = opportunity.best_ev.ev_percent
    return min_ev_percent <= ev_percent <= EV_ABSURDITY_CEILING


def filter_opportunities(
    opportunities: Iterable[EVOpportunity], min_ev_percent: float
) -> list[EVOpportunity]:
    """Caller-side threshold: keep opportunities at or above `min_ev_percent`."""
    return [opp for opp in opportunities if meets_min_ev(opp, min_ev_percent)]


def generate_explanation(opportunity: EVOpportunity) -> list[str]:
    """Human-readable bullets explaining why the best EV was picked."""
    best = opportunity.best_ev
    fair_result = opportunity.fair_odds.get(best.method)

    bullets = [
        f"This bet has {best.ev_percent:.1f}% expected value at {best.target_book_name}.",
        (
            f"Fair odds calculated using {best.method.label} method across "
            f"{opportunity.book_count} sportsbooks."
        ),
        (
            f"{best.target_book_name} offers {best.offered_odds:.2f} decimal odds vs fair odds "
            f"of {best.fair_odds:.2f}."
        ),
    ]

    if best.offered_odds > 0 and best.fair_odds > 0:
        offered_pct = 100.0 / best.offered_odds
        fair_pct = 100.0 / best.fair_odds
        bullets.append(
            f"The market implies {offered_pct:.1f}% probability, but true probability is "
            f"estimated at {fair_pct:.1f}%."
        )

    if fair_result is not None and fair_result.books_excluded > 0:
        excluded = fair_result.books_excluded
        if excluded > 1:
            bullets.append(f"{excluded} sportsbooks were excluded as outliers.")
        else:
            bullets.append(f"{excluded} sportsbook was excluded as outlier.")

    if fair_result is not None and fair_result.is_fallback and fair_result.fallback_reason:
        bullets.append(f"Note: {fair_result.fallback_reason}")

    return bullets


def book_breakdown(opportunity: EVOpportunity) -> list[BookBreakdown]:
    """Percent deviation of each book's decimal odds from the winning fair decimal odds."""
    fair_odds = opportunity.best_ev.fair_odds
    rows: list[BookBreakdown] = []
    for book in opportunity.book_odds:
        deviation = ((book.decimal_odds / fair_odds) - 1.0) * 100.0 if fair_odds > 0 else 0.0
        rows.append(BookBreakdown(book=book, deviation_from_fair=deviation))
    return rows
