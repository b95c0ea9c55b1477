"""Tabular projections of EV opportunities for persistence and API layers."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import polars as pl

from ev_bets.models import EVOpportunity
from ev_bets.time_utils import iso_z

_OPPORTUNITY_SCHEMA: list[tuple[str, Any]] = [
    ("id", pl.Utf8),
    ("fixture_id", pl.Utf8),
    ("sport", pl.Utf8),
    ("league", pl.Utf8),
    ("league_name", pl.Utf8),
    ("home_team", pl.Utf8),
    ("away_team", pl.Utf8),
    ("starts_at", pl.Utf8),
    ("market", pl.Utf8),
    ("selection", pl.Utf8),
    ("selection_key", pl.Utf8),
    ("line", pl.Float64),
    ("player_id", pl.Utf8),
    ("player_name", pl.Utf8),
    ("best_ev_percent", pl.Float64),
    ("best_target_book_id", pl.Utf8),
    ("best_target_book_name", pl.Utf8),
    ("best_method", pl.Utf8),
    ("best_offered_odds", pl.Float64),
    ("best_fair_odds", pl.Float64),
    ("calculations_json", pl.Utf8),
    ("fair_odds_json", pl.Utf8),
    ("book_odds_json", pl.Utf8),
    ("book_count", pl.Int64),
    ("timestamp", pl.Utf8),
]

_CALCULATION_SCHEMA: list[tuple[str, Any]] = [
    ("opportunity_id", pl.Utf8),
    ("selection_key", pl.Utf8),
    ("method", pl.Utf8),
    ("target_book_id", pl.Utf8),
    ("target_book_name", pl.Utf8),
    ("offered_decimal_odds", pl.Float64),
    ("offered_implied_probability", pl.Float64),
    ("fair_probability", pl.Float64),
    ("fair_decimal_odds", pl.Float64),
    ("ev_percent", pl.Float64),
]


def _json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _opportunity_row(opp: EVOpportunity) -> dict[str, Any]:
    payload = opp.to_dict()
    return {
        "id": opp.id,
        "fixture_id": opp.fixture_id,
        "sport": opp.sport,
        "league": opp.league,
        "league_name": opp.league_name,
        "home_team": opp.home_team,
        "away_team": opp.away_team,
        "starts_at": opp.starts_at,
        "market": opp.market,
        "selection": opp.selection,
        "selection_key": opp.selection_key,
        "line": opp.line,
        "player_id": opp.player_id,
        "player_name": opp.player_name,
        "best_ev_percent": opp.best_ev.ev_percent,
        "best_target_book_id": opp.best_ev.target_book_id,
        "best_target_book_name": opp.best_ev.target_book_name,
        "best_method": opp.best_ev.method.value,
        "best_offered_odds": opp.best_ev.offered_odds,
        "best_fair_odds": opp.best_ev.fair_odds,
        "calculations_json": _json(payload["calculations"]),
        "fair_odds_json": _json(payload["fairOdds"]),
        "book_odds_json": _json(payload["bookOdds"]),
        "book_count": opp.book_count,
        "timestamp": iso_z(opp.timestamp),
    }


def opportunities_frame(opportunities: Iterable[EVOpportunity]) -> pl.DataFrame:
    """One row per opportunity, best EV first (ties by id)."""
    rows = [_opportunity_row(opp) for opp in opportunities]
    frame = pl.DataFrame(rows, schema=_OPPORTUNITY_SCHEMA)
    return frame.sort(["best_ev_percent", "id"], descending=[True, False])


def calculations_frame(opportunities: Iterable[EVOpportunity]) -> pl.DataFrame:
    """One row per (opportunity, method, target book) EV calculation."""
    rows: list[dict[str, Any]] = []
    for opp in opportunities:
        for method, calcs in opp.calculations.items():
            for calc in calcs:
                rows.append(
                    {
                        "opportunity_id": opp.id,
                        "selection_key": opp.selection_key,
                        "method": method.value,
                        "target_book_id": calc.target_book_id,
                        "target_book_name": calc.target_book_name,
                        "offered_decimal_odds": calc.offered_decimal_odds,
                        "offered_implied_probability": calc.offered_implied_probability,
                        "fair_probability": calc.fair_probability,
                        "fair_decimal_odds": calc.fair_decimal_odds,
                        "ev_percent": calc.ev_percent,
                    }
                )
    return pl.DataFrame(rows, schema=_CALCULATION_SCHEMA)


def write_opportunities_parquet(opportunities: Iterable[EVOpportunity], path: Path | str) -> int:
    """Write the opportunity table to Parquet and return the row count."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    frame = opportunities_frame(opportunities)
    frame.write_parquet(target)
    return frame.height
