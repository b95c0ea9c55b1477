"""Normalization helpers turning provider quotes into grouped selection panels."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ev_bets.errors import InvalidPriceError, PayloadError
from ev_bets.models import BookEntry, FixtureMeta, NormalizedQuote, Quote, SelectionGroup
from ev_bets.odds_math import (
    american_to_decimal,
    decimal_to_implied_probability,
    is_valid_american_price,
)
from ev_bets.time_utils import parse_quote_timestamp, utc_now

logger = logging.getLogger(__name__)

SELECTION_KEY_SEPARATOR = "||"
MIN_DECIMAL_ODDS = 1.01
DEFAULT_MAX_DECIMAL_ODDS = 10.0


@dataclass(frozen=True)
class NormalizedFixture:
    """Normalized quotes for one fixture plus counts of dropped rows."""

    fixture_id: str
    quotes: tuple[NormalizedQuote, ...]
    dropped_over_ceiling: int
    dropped_invalid_price: int

    @property
    def dropped(self) -> int:
        return self.dropped_over_ceiling + self.dropped_invalid_price


def _expect_dict(value: Any, context: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise PayloadError(f"{context} must be an object")
    return value


def _expect_list(value: Any, context: str) -> list[Any]:
    if not isinstance(value, list):
        raise PayloadError(f"{context} must be a list")
    return value


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _format_line(line: float) -> str:
    value = float(line)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def build_selection_key(
    fixture_id: str,
    market: str,
    selection: str,
    line: float | None = None,
    player_id: str | None = None,
) -> str:
    """Join the identifying fields of one bettable outcome into a stable key."""
    parts = [fixture_id, market, selection]
    if line is not None:
        parts.append(_format_line(line))
    if player_id:
        parts.append(player_id)
    return SELECTION_KEY_SEPARATOR.join(parts)


def sportsbook_id_from_name(name: str) -> str:
    """Derive a sportsbook id from its display name (``Bet 365`` -> ``bet_365``)."""
    return re.sub(r"\s+", "_", name.strip().lower())


def normalize_quote(
    quote: Quote,
    fixture_id: str,
    sportsbook_id: str,
    sportsbook_name: str,
    *,
    max_decimal_odds: float = DEFAULT_MAX_DECIMAL_ODDS,
    now: datetime | None = None,
) -> NormalizedQuote | None:
    """Convert one quote to decimal odds and implied probability.

    Returns None when the decimal price is above `max_decimal_odds`.
    Raises `InvalidPriceError` when the American price is not a valid price.
    """
    if not is_valid_american_price(quote.price):
        raise InvalidPriceError(
            f"invalid American price {quote.price!r} from {sportsbook_id} on {quote.market}"
        )

    decimal_odds = max(MIN_DECIMAL_ODDS, american_to_decimal(quote.price))
    if decimal_odds > max_decimal_odds:
        return None

    return NormalizedQuote(
        fixture_id=fixture_id,
        market=quote.market,
        selection=quote.selection,
        selection_key=build_selection_key(
            fixture_id, quote.market, quote.selection, quote.line, quote.player_id
        ),
        decimal_odds=decimal_odds,
        implied_probability=decimal_to_implied_probability(decimal_odds),
        sportsbook_id=sportsbook_id,
        sportsbook_name=sportsbook_name,
        timestamp=parse_quote_timestamp(quote.timestamp, default=now or utc_now()),
        line=quote.line,
        player_id=quote.player_id,
        player_name=quote.player_name,
    )


def normalize_fixture_quotes(
    quotes: Iterable[Quote],
    fixture_id: str,
    *,
    max_decimal_odds: float = DEFAULT_MAX_DECIMAL_ODDS,
    now: datetime | None = None,
) -> NormalizedFixture:
    """Normalize every quote of one fixture, counting the rows that were dropped."""
    resolved_now = now or utc_now()
    normalized: list[NormalizedQuote] = []
    over_ceiling = 0
    invalid_price = 0
    for quote in quotes:
        try:
            row = normalize_quote(
                quote,
                fixture_id,
                quote.sportsbook_id,
                quote.sportsbook_name,
                max_decimal_odds=max_decimal_odds,
                now=resolved_now,
            )
        except InvalidPriceError as exc:
            invalid_price += 1
            logger.debug("Dropping quote for fixture %s: %s", fixture_id, exc)
            continue
        if row is None:
            over_ceiling += 1
            continue
        normalized.append(row)

    if over_ceiling or invalid_price:
        logger.debug(
            "Fixture %s: dropped %d quotes above %.2f decimal, %d with invalid prices",
            fixture_id,
            over_ceiling,
            max_decimal_odds,
            invalid_price,
        )
    return NormalizedFixture(
        fixture_id=fixture_id,
        quotes=tuple(normalized),
        dropped_over_ceiling=over_ceiling,
        dropped_invalid_price=invalid_price,
    )


def group_by_selection(
    quotes: Iterable[NormalizedQuote],
    target_book_ids: Sequence[str],
    sharp_book_id: str,
) -> list[SelectionGroup]:
    """Build one group per selection key, in first-seen order.

    A book quoting the same selection twice keeps its first position and
    takes the later price.
    """
    targets = frozenset(target_book_ids)
    heads: dict[str, NormalizedQuote] = {}
    entries: dict[str, dict[str, BookEntry]] = {}
    for quote in quotes:
        heads.setdefault(quote.selection_key, quote)
        entries.setdefault(quote.selection_key, {})[quote.sportsbook_id] = BookEntry(
            sportsbook_id=quote.sportsbook_id,
            sportsbook_name=quote.sportsbook_name,
            decimal_odds=quote.decimal_odds,
            implied_probability=quote.implied_probability,
            is_target=quote.sportsbook_id in targets,
            is_sharp=quote.sportsbook_id == sharp_book_id,
            timestamp=quote.timestamp,
        )

    groups: list[SelectionGroup] = []
    for key, head in heads.items():
        groups.append(
            SelectionGroup(
                fixture_id=head.fixture_id,
                market=head.market,
                selection=head.selection,
                selection_key=key,
                entries=tuple(entries[key].values()),
                line=head.line,
                player_id=head.player_id,
                player_name=head.player_name,
            )
        )
    return groups


def _named(value: Any, fallback: str = "") -> str:
    if isinstance(value, dict):
        return str(value.get("id") or value.get("name") or fallback)
    if value is None:
        return fallback
    return str(value)


def _competitor_name(payload: dict[str, Any], side: str) -> str | None:
    display = _optional_text(payload.get(f"{side}_team_display"))
    if display:
        return display
    competitors = payload.get(f"{side}_competitors")
    if isinstance(competitors, list) and competitors and isinstance(competitors[0], dict):
        return _optional_text(competitors[0].get("name"))
    return None


def fixture_meta_from_payload(payload: Any) -> FixtureMeta:
    """Extract fixture descriptors from one provider fixture object."""
    fixture = _expect_dict(payload, "fixture")
    league = fixture.get("league")
    return FixtureMeta(
        sport=_named(fixture.get("sport")),
        league=_named(league),
        starts_at=str(fixture.get("start_date", "")),
        league_name=_optional_text(league.get("name")) if isinstance(league, dict) else None,
        home_team=_competitor_name(fixture, "home"),
        away_team=_competitor_name(fixture, "away"),
    )


def quotes_from_fixture_payload(payload: Any) -> list[Quote]:
    """Map the odds entries of one provider fixture object onto `Quote` rows.

    Prices pass through unchecked; `normalize_fixture_quotes` counts and drops
    rows whose price is missing or invalid.
    """
    fixture = _expect_dict(payload, "fixture")
    odds = _expect_list(fixture.get("odds", []), "fixture.odds")
    quotes: list[Quote] = []
    for entry in odds:
        entry_dict = _expect_dict(entry, "fixture.odds[]")
        sportsbook_name = str(entry_dict.get("sportsbook", "")).strip()
        if not sportsbook_name:
            raise PayloadError("fixture.odds[].sportsbook is required")
        quotes.append(
            Quote(
                sportsbook_id=sportsbook_id_from_name(sportsbook_name),
                sportsbook_name=sportsbook_name,
                market=str(entry_dict.get("market", "")),
                selection=str(entry_dict.get("name", "")),
                price=entry_dict.get("price"),
                line=_optional_float(entry_dict.get("points")),
                player_id=_optional_text(entry_dict.get("player_id")),
                player_name=_optional_text(entry_dict.get("player_name")),
                timestamp=entry_dict.get("timestamp"),
            )
        )
    return quotes
