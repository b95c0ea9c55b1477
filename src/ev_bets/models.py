"""Domain records for quotes, selection groups, fair odds, and EV opportunities."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from ev_bets.time_utils import iso_z


class FairOddsMethod(StrEnum):
    """Closed set of fair-probability estimation methods."""

    TRIMMED_MEAN_PROB = "TRIMMED_MEAN_PROB"
    SHARP_BOOK_REFERENCE = "SHARP_BOOK_REFERENCE"

    @property
    def label(self) -> str:
        """Readable form used in explanations, e.g. ``trimmed mean prob``."""
        return self.value.replace("_", " ").lower()


ALL_METHODS: tuple[FairOddsMethod, ...] = tuple(FairOddsMethod)


@dataclass(frozen=True)
class Quote:
    """One sportsbook price for one selection, as received from the provider."""

    sportsbook_id: str
    sportsbook_name: str
    market: str
    selection: str
    # Raw provider value; `normalize_quote` rejects anything that is not a valid price.
    price: Any
    line: float | None = None
    player_id: str | None = None
    player_name: str | None = None
    timestamp: int | float | str | None = None


@dataclass(frozen=True)
class NormalizedQuote:
    fixture_id: str
    market: str
    selection: str
    selection_key: str
    decimal_odds: float
    implied_probability: float
    sportsbook_id: str
    sportsbook_name: str
    timestamp: datetime
    line: float | None = None
    player_id: str | None = None
    player_name: str | None = None


@dataclass(frozen=True)
class BookEntry:
    """Per-book price inside a selection group."""

    sportsbook_id: str
    sportsbook_name: str
    decimal_odds: float
    implied_probability: float
    is_target: bool
    is_sharp: bool
    timestamp: datetime
    is_outlier: bool = False


@dataclass(frozen=True)
class SelectionGroup:
    """All book prices for one bettable outcome, keyed by `selection_key`."""

    fixture_id: str
    market: str
    selection: str
    selection_key: str
    entries: tuple[BookEntry, ...]
    line: float | None = None
    player_id: str | None = None
    player_name: str | None = None

    @property
    def book_count(self) -> int:
        return len(self.entries)

    @property
    def implied_probabilities(self) -> list[float]:
        return [entry.implied_probability for entry in self.entries]

    def sharp_entry(self) -> BookEntry | None:
        for entry in self.entries:
            if entry.is_sharp:
                return entry
        return None

    def with_outliers(self, flags: Sequence[bool]) -> SelectionGroup:
        """Return a copy with each entry's `is_outlier` set from `flags`."""
        if len(flags) != len(self.entries):
            raise ValueError("outlier flags must match entry count")
        entries = tuple(
            replace(entry, is_outlier=bool(flag))
            for entry, flag in zip(self.entries, flags, strict=True)
        )
        return replace(self, entries=entries)


@dataclass(frozen=True)
class FairOddsResult:
    method: FairOddsMethod
    fair_probability: float
    fair_decimal_odds: float
    books_used: int
    books_excluded: int
    outlier_book_ids: tuple[str, ...] = ()
    is_fallback: bool = False
    fallback_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "method": self.method.value,
            "fairProbability": self.fair_probability,
            "fairDecimalOdds": self.fair_decimal_odds,
            "booksUsed": self.books_used,
            "booksExcluded": self.books_excluded,
            "outlierBookIds": list(self.outlier_book_ids),
            "isFallback": self.is_fallback,
        }
        if self.fallback_reason is not None:
            payload["fallbackReason"] = self.fallback_reason
        return payload


@dataclass(frozen=True)
class FairOddsEstimate:
    """One method's result plus the group annotated by that run."""

    result: FairOddsResult
    group: SelectionGroup


@dataclass(frozen=True)
class EVCalculation:
    target_book_id: str
    target_book_name: str
    offered_decimal_odds: float
    offered_implied_probability: float
    fair_probability: float
    fair_decimal_odds: float
    ev_percent: float
    method: FairOddsMethod

    def to_dict(self) -> dict[str, Any]:
        return {
            "targetBookId": self.target_book_id,
            "targetBookName": self.target_book_name,
            "offeredDecimalOdds": self.offered_decimal_odds,
            "offeredImpliedProbability": self.offered_implied_probability,
            "fairProbability": self.fair_probability,
            "fairDecimalOdds": self.fair_decimal_odds,
            "evPercent": self.ev_percent,
            "method": self.method.value,
        }


@dataclass(frozen=True)
class BestEV:
    ev_percent: float
    target_book_id: str
    target_book_name: str
    method: FairOddsMethod
    offered_odds: float
    fair_odds: float

    @classmethod
    def from_calculation(cls, calculation: EVCalculation) -> BestEV:
        return cls(
            ev_percent=calculation.ev_percent,
            target_book_id=calculation.target_book_id,
            target_book_name=calculation.target_book_name,
            method=calculation.method,
            offered_odds=calculation.offered_decimal_odds,
            fair_odds=calculation.fair_decimal_odds,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "evPercent": self.ev_percent,
            "targetBookId": self.target_book_id,
            "targetBookName": self.target_book_name,
            "method": self.method.value,
            "offeredOdds": self.offered_odds,
            "fairOdds": self.fair_odds,
        }


@dataclass(frozen=True)
class BookOdds:
    sportsbook_id: str
    sportsbook_name: str
    decimal_odds: float
    implied_probability: float
    is_target: bool
    is_sharp: bool
    is_outlier: bool

    @classmethod
    def from_entry(cls, entry: BookEntry) -> BookOdds:
        return cls(
            sportsbook_id=entry.sportsbook_id,
            sportsbook_name=entry.sportsbook_name,
            decimal_odds=entry.decimal_odds,
            implied_probability=entry.implied_probability,
            is_target=entry.is_target,
            is_sharp=entry.is_sharp,
            is_outlier=entry.is_outlier,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sportsbookId": self.sportsbook_id,
            "sportsbookName": self.sportsbook_name,
            "decimalOdds": self.decimal_odds,
            "impliedProbability": self.implied_probability,
            "isTarget": self.is_target,
            "isSharp": self.is_sharp,
            "isOutlier": self.is_outlier,
        }


@dataclass(frozen=True)
class FixtureMeta:
    """Fixture descriptors copied onto every opportunity for that fixture."""

    sport: str
    league: str
    starts_at: str
    league_name: str | None = None
    home_team: str | None = None
    away_team: str | None = None


@dataclass(frozen=True)
class EVOpportunity:
    id: str
    fixture_id: str
    sport: str
    league: str
    starts_at: str
    market: str
    selection: str
    selection_key: str
    best_ev: BestEV
    calculations: Mapping[FairOddsMethod, tuple[EVCalculation, ...]]
    fair_odds: Mapping[FairOddsMethod, FairOddsResult]
    book_odds: tuple[BookOdds, ...]
    book_count: int
    timestamp: datetime
    league_name: str | None = None
    home_team: str | None = None
    away_team: str | None = None
    line: float | None = None
    player_id: str | None = None
    player_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready payload for the persistence and API layers."""
        return {
            "id": self.id,
            "fixtureId": self.fixture_id,
            "sport": self.sport,
            "league": self.league,
            "leagueName": self.league_name,
            "homeTeam": self.home_team,
            "awayTeam": self.away_team,
            "startsAt": self.starts_at,
            "market": self.market,
            "selection": self.selection,
            "selectionKey": self.selection_key,
            "line": self.line,
            "playerId": self.player_id,
            "playerName": self.player_name,
            "bestEV": self.best_ev.to_dict(),
            "calculations": {
                method.value: [calc.to_dict() for calc in calcs]
                for method, calcs in self.calculations.items()
            },
            "fairOdds": {
                method.value: result.to_dict() for method, result in self.fair_odds.items()
            },
            "bookOdds": [book.to_dict() for book in self.book_odds],
            "bookCount": self.book_count,
            "timestamp": iso_z(self.timestamp),
        }
