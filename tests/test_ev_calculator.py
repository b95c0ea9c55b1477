from __future__ import annotations

import hashlib
from datetime import UTC, datetime, timedelta

import pytest

from ev_bets.ev_calculator import (
    book_breakdown,
    calculate_all_bets,
    calculate_ev,
    calculate_ev_for_targets,
    calculate_opportunities,
    filter_opportunities,
    generate_explanation,
    meets_min_ev,
    opportunity_id,
)
from ev_bets.fair_odds import FairOddsPanel
from ev_bets.models import BookEntry, FairOddsMethod, FairOddsResult, FixtureMeta, SelectionGroup
from ev_bets.runtime_config import EngineConfig

TS = datetime(2026, 2, 14, 12, 0, tzinfo=UTC)
CONFIG = EngineConfig()
FIXTURE = FixtureMeta(
    sport="soccer",
    league="england_-_premier_league",
    starts_at="2026-02-14T20:00:00Z",
    league_name="England - Premier League",
    home_team="Arsenal",
    away_team="Chelsea",
)
KEY = "fx-1||Moneyline||Home"

PRICES = [
    ("betano", 2.2),
    ("unibet", 2.05),
    ("pinnacle", 2.0),
    ("bet365", 2.0),
    ("williamhill", 1.95),
]
TRIMMED_MEAN = (1 / 2.2 + 1 / 2.05 + 0.5 + 0.5 + 1 / 1.95) / 5


def _entry(book: str, decimal_odds: float, timestamp: datetime = TS) -> BookEntry:
    return BookEntry(
        sportsbook_id=book,
        sportsbook_name=book.title(),
        decimal_odds=decimal_odds,
        implied_probability=1.0 / decimal_odds,
        is_target=book in CONFIG.target_book_ids,
        is_sharp=book == CONFIG.sharp_book_id,
        timestamp=timestamp,
    )


def _group(prices: list[tuple[str, float]]) -> SelectionGroup:
    return SelectionGroup(
        fixture_id="fx-1",
        market="Moneyline",
        selection="Home",
        selection_key=KEY,
        entries=tuple(_entry(book, odds) for book, odds in prices),
    )


def _result(method: FairOddsMethod, probability: float) -> FairOddsResult:
    return FairOddsResult(
        method=method,
        fair_probability=probability,
        fair_decimal_odds=1.0 / probability,
        books_used=5,
        books_excluded=0,
    )


@pytest.mark.parametrize(
    ("probability", "odds", "expected"),
    [
        (0.5, 2.2, 10.0),
        (0.5, 1.8, -10.0),
        (0.25, 4.0, 0.0),
        (0.0, 3.0, 0.0),
        (1.0, 3.0, 0.0),
        (-0.1, 3.0, 0.0),
    ],
)
def test_calculate_ev(probability: float, odds: float, expected: float) -> None:
    assert calculate_ev(probability, odds) == pytest.approx(expected)


def test_calculate_ev_for_targets_scores_only_targets() -> None:
    group = _group(PRICES)

    calcs = calculate_ev_for_targets(
        group, _result(FairOddsMethod.TRIMMED_MEAN_PROB, 0.5), ["betano", "unibet"]
    )

    assert [calc.target_book_id for calc in calcs] == ["betano", "unibet"]
    assert calcs[0].ev_percent == pytest.approx(10.0)
    assert calcs[0].offered_implied_probability == pytest.approx(1 / 2.2)
    assert calcs[1].ev_percent == pytest.approx(2.5)
    assert all(calc.method is FairOddsMethod.TRIMMED_MEAN_PROB for calc in calcs)


def test_calculate_ev_for_targets_skips_zero_probability() -> None:
    fallback = FairOddsResult(
        method=FairOddsMethod.TRIMMED_MEAN_PROB,
        fair_probability=0.0,
        fair_decimal_odds=0.0,
        books_used=2,
        books_excluded=0,
        is_fallback=True,
        fallback_reason="Insufficient books (2 < 3)",
    )

    assert calculate_ev_for_targets(_group(PRICES), fallback, ["betano"]) == []


def test_calculate_ev_for_targets_drops_absurd_values() -> None:
    group = _group([("betano", 9.0), ("unibet", 2.0)])

    calcs = calculate_ev_for_targets(
        group, _result(FairOddsMethod.TRIMMED_MEAN_PROB, 0.5), ["betano", "unibet"]
    )

    assert [calc.target_book_id for calc in calcs] == ["unibet"]


def test_opportunity_id_is_stable_hash() -> None:
    raw = f"{KEY}||TRIMMED_MEAN_PROB||betano"
    expected = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]

    assert opportunity_id(KEY, FairOddsMethod.TRIMMED_MEAN_PROB, "betano") == expected
    assert opportunity_id(KEY, FairOddsMethod.SHARP_BOOK_REFERENCE, "betano") != expected


def test_calculate_opportunities_picks_best_method_and_book() -> None:
    opp = calculate_opportunities(_group(PRICES), FIXTURE, CONFIG)

    assert opp is not None
    assert opp.best_ev.method is FairOddsMethod.TRIMMED_MEAN_PROB
    assert opp.best_ev.target_book_id == "betano"
    assert opp.best_ev.ev_percent == pytest.approx((TRIMMED_MEAN * 2.2 - 1) * 100)
    assert opp.best_ev.fair_odds == pytest.approx(1 / TRIMMED_MEAN)
    assert opp.id == opportunity_id(KEY, FairOddsMethod.TRIMMED_MEAN_PROB, "betano")
    assert opp.book_count == 5
    assert opp.sport == "soccer"
    assert opp.home_team == "Arsenal"
    sharp_calcs = opp.calculations[FairOddsMethod.SHARP_BOOK_REFERENCE]
    assert [calc.target_book_id for calc in sharp_calcs] == ["betano", "unibet"]
    assert opp.fair_odds[FairOddsMethod.SHARP_BOOK_REFERENCE].fair_probability == pytest.approx(
        0.5 / 1.025
    )


def test_calculate_opportunities_sorts_book_odds() -> None:
    opp = calculate_opportunities(_group(PRICES), FIXTURE, CONFIG)

    assert opp is not None
    assert [book.sportsbook_id for book in opp.book_odds] == [
        "betano",
        "unibet",
        "pinnacle",
        "bet365",
        "williamhill",
    ]


def test_calculate_opportunities_marks_outliers_on_book_odds() -> None:
    group = _group([*PRICES, ("bwin", 3.5)])

    opp = calculate_opportunities(group, FIXTURE, CONFIG)

    assert opp is not None
    flagged = [book.sportsbook_id for book in opp.book_odds if book.is_outlier]
    assert flagged == ["bwin"]
    assert opp.book_odds[2].sportsbook_id == "bwin"


def test_best_ev_spans_methods(monkeypatch: pytest.MonkeyPatch) -> None:
    group = _group(PRICES)
    panel = FairOddsPanel(
        results={
            FairOddsMethod.TRIMMED_MEAN_PROB: _result(FairOddsMethod.TRIMMED_MEAN_PROB, 0.48),
            FairOddsMethod.SHARP_BOOK_REFERENCE: _result(
                FairOddsMethod.SHARP_BOOK_REFERENCE, 0.52
            ),
        },
        group=group,
    )
    monkeypatch.setattr("ev_bets.ev_calculator.calculate_all_fair_odds", lambda *_: panel)

    opp = calculate_opportunities(group, FIXTURE, CONFIG)

    assert opp is not None
    assert opp.best_ev.method is FairOddsMethod.SHARP_BOOK_REFERENCE
    assert opp.best_ev.ev_percent == pytest.approx(14.4)


def test_best_ev_tie_keeps_first_method(monkeypatch: pytest.MonkeyPatch) -> None:
    group = _group(PRICES)
    panel = FairOddsPanel(
        results={
            FairOddsMethod.TRIMMED_MEAN_PROB: _result(FairOddsMethod.TRIMMED_MEAN_PROB, 0.5),
            FairOddsMethod.SHARP_BOOK_REFERENCE: _result(FairOddsMethod.SHARP_BOOK_REFERENCE, 0.5),
        },
        group=group,
    )
    monkeypatch.setattr("ev_bets.ev_calculator.calculate_all_fair_odds", lambda *_: panel)

    opp = calculate_opportunities(group, FIXTURE, CONFIG)

    assert opp is not None
    assert opp.best_ev.method is FairOddsMethod.TRIMMED_MEAN_PROB
    assert opp.best_ev.target_book_id == "betano"


def test_calculate_opportunities_respects_target_override() -> None:
    opp = calculate_opportunities(_group(PRICES), FIXTURE, CONFIG, target_book_ids=["unibet"])

    assert opp is not None
    assert opp.best_ev.target_book_id == "unibet"


def test_calculate_opportunities_applies_no_threshold() -> None:
    prices = [("betano", 1.8), ("pinnacle", 2.0), ("bet365", 2.0), ("williamhill", 2.0)]

    opp = calculate_opportunities(_group(prices), FIXTURE, CONFIG)

    assert opp is not None
    assert opp.best_ev.ev_percent < 0


def test_calculate_opportunities_returns_none_without_scores() -> None:
    two_books = _group([("betano", 2.2), ("pinnacle", 2.0)])

    assert calculate_opportunities(two_books, FIXTURE, CONFIG) is None
    assert calculate_opportunities(_group(PRICES[2:]), FIXTURE, CONFIG) is None


def test_calculate_opportunities_is_idempotent() -> None:
    group = SelectionGroup(
        fixture_id="fx-1",
        market="Moneyline",
        selection="Home",
        selection_key=KEY,
        entries=tuple(
            _entry(book, odds, TS + timedelta(minutes=index))
            for index, (book, odds) in enumerate(PRICES)
        ),
    )

    first = calculate_opportunities(group, FIXTURE, CONFIG)
    second = calculate_opportunities(group, FIXTURE, CONFIG)

    assert first is not None
    assert first == second
    assert first.timestamp == TS + timedelta(minutes=4)


def test_calculate_opportunities_uses_explicit_now() -> None:
    now = datetime(2026, 3, 1, tzinfo=UTC)

    opp = calculate_opportunities(_group(PRICES), FIXTURE, CONFIG, now=now)

    assert opp is not None
    assert opp.timestamp == now


def test_calculate_all_bets_seeds_filtered_selection() -> None:
    prices = [("betano", 100.0), ("pinnacle", 2.0), ("bet365", 2.0), ("williamhill", 2.1)]
    group = _group(prices)

    assert calculate_opportunities(group, FIXTURE, CONFIG) is None
    opp = calculate_all_bets(group, FIXTURE, CONFIG)

    assert opp is not None
    assert opp.best_ev.target_book_id == "betano"
    assert opp.best_ev.method is FairOddsMethod.TRIMMED_MEAN_PROB
    assert opp.best_ev.ev_percent > 200
    assert opp.calculations[FairOddsMethod.TRIMMED_MEAN_PROB] == ()
    assert not meets_min_ev(opp, CONFIG.min_ev_percent)


def test_calculate_all_bets_matches_opportunities_when_scored() -> None:
    group = _group(PRICES)

    assert calculate_all_bets(group, FIXTURE, CONFIG) == calculate_opportunities(
        group, FIXTURE, CONFIG
    )


def test_calculate_all_bets_none_without_probability() -> None:
    group = _group([("betano", 2.2), ("pinnacle", 2.0)])

    assert calculate_all_bets(group, FIXTURE, CONFIG) is None


def test_filter_opportunities_applies_threshold() -> None:
    opp = calculate_opportunities(_group(PRICES), FIXTURE, CONFIG)
    assert opp is not None

    assert filter_opportunities([opp], 5.0) == [opp]
    assert filter_opportunities([opp], 9.0) == []
    assert meets_min_ev(opp, 8.0)


def test_generate_explanation() -> None:
    opp = calculate_opportunities(_group(PRICES), FIXTURE, CONFIG)
    assert opp is not None

    bullets = generate_explanation(opp)

    assert bullets == [
        "This bet has 8.0% expected value at Betano.",
        "Fair odds calculated using trimmed mean prob method across 5 sportsbooks.",
        "Betano offers 2.20 decimal odds vs fair odds of 2.04.",
        "The market implies 45.5% probability, but true probability is estimated at 49.1%.",
    ]


def test_generate_explanation_mentions_excluded_book() -> None:
    opp = calculate_opportunities(_group([*PRICES, ("bwin", 3.5)]), FIXTURE, CONFIG)
    assert opp is not None

    bullets = generate_explanation(opp)

    assert "across 6 sportsbooks." in bullets[1]
    assert bullets[-1] == "1 sportsbook was excluded as outlier."


def test_generate_explanation_notes_fallback() -> None:
    prices = [price for price in PRICES if price[0] != "pinnacle"]
    config = EngineConfig(methods=(FairOddsMethod.SHARP_BOOK_REFERENCE,))
    opp = calculate_opportunities(_group(prices), FIXTURE, config)
    assert opp is not None

    bullets = generate_explanation(opp)

    assert "sharp book reference" in bullets[1]
    assert bullets[-1] == "Note: sharp book does not quote this market"


def test_book_breakdown_matches_best_ev() -> None:
    opp = calculate_opportunities(_group(PRICES), FIXTURE, CONFIG)
    assert opp is not None

    rows = book_breakdown(opp)

    assert [row.book.sportsbook_id for row in rows][0] == "betano"
    assert rows[0].deviation_from_fair == pytest.approx(opp.best_ev.ev_percent)
    assert rows[-1].book.sportsbook_id == "williamhill"
    assert rows[-1].deviation_from_fair == pytest.approx((1.95 / (1 / TRIMMED_MEAN) - 1) * 100)
    assert rows[-1].deviation_from_fair < 0


def test_opportunity_to_dict() -> None:
    opp = calculate_opportunities(_group(PRICES), FIXTURE, CONFIG)
    assert opp is not None

    payload = opp.to_dict()

    assert payload["selectionKey"] == KEY
    assert payload["bestEV"]["targetBookId"] == "betano"
    assert payload["bestEV"]["method"] == "TRIMMED_MEAN_PROB"
    assert set(payload["fairOdds"]) == {"TRIMMED_MEAN_PROB", "SHARP_BOOK_REFERENCE"}
    assert payload["bookOdds"][0]["isTarget"] is True
    assert payload["timestamp"] == "2026-02-14T12:00:00Z"
