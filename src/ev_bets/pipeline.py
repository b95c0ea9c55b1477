"""One in-process pass: provider fixtures -> normalized groups -> EV opportunities.

Fetching payloads and persisting results belong to the caller; this module
does no I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ev_bets.errors import EvBetsError
from ev_bets.ev_calculator import calculate_all_bets, calculate_opportunities, meets_min_ev
from ev_bets.models import EVOpportunity, FixtureMeta
from ev_bets.normalize import (
    fixture_meta_from_payload,
    group_by_selection,
    normalize_fixture_quotes,
    quotes_from_fixture_payload,
)
from ev_bets.runtime_config import EngineConfig
from ev_bets.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FixtureOutcome:
    fixture_id: str
    fixture: FixtureMeta
    opportunities: tuple[EVOpportunity, ...]
    groups_scored: int
    quotes_normalized: int
    quotes_dropped: int


@dataclass
class PassResult:
    fixtures_processed: int = 0
    opportunities: list[EVOpportunity] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def opportunities_found(self) -> int:
        return len(self.opportunities)


def process_fixture(
    payload: Any,
    config: EngineConfig,
    *,
    track_all: bool = False,
    now: datetime | None = None,
) -> FixtureOutcome:
    """Score every selection of one provider fixture object.

    With `track_all`, every scoreable selection is kept regardless of EV;
    otherwise only opportunities clearing `config.min_ev_percent` survive.
    """
    fixture = fixture_meta_from_payload(payload)
    fixture_id = str(payload.get("id", "")).strip()
    if not fixture_id:
        raise EvBetsError("fixture.id is required")

    resolved_now = now or utc_now()
    normalized = normalize_fixture_quotes(
        quotes_from_fixture_payload(payload),
        fixture_id,
        max_decimal_odds=config.max_decimal_odds,
        now=resolved_now,
    )
    groups = group_by_selection(normalized.quotes, config.target_book_ids, config.sharp_book_id)

    scorer = calculate_all_bets if track_all else calculate_opportunities
    opportunities: list[EVOpportunity] = []
    for group in groups:
        opportunity = scorer(group, fixture, config)
        if opportunity is None:
            continue
        if not track_all and not meets_min_ev(opportunity, config.min_ev_percent):
            continue
        opportunities.append(opportunity)

    return FixtureOutcome(
        fixture_id=fixture_id,
        fixture=fixture,
        opportunities=tuple(opportunities),
        groups_scored=len(groups),
        quotes_normalized=len(normalized.quotes),
        quotes_dropped=normalized.dropped,
    )


def run_pass(
    payloads: Iterable[Any],
    config: EngineConfig,
    *,
    track_all: bool = False,
    now: datetime | None = None,
) -> PassResult:
    """Process a batch of fixtures; a failing fixture is recorded and skipped."""
    resolved_now = now or utc_now()
    result = PassResult()
    logger.info(
        "Starting pass: targets=%s sharp=%s",
        ",".join(config.target_book_ids),
        config.sharp_book_id,
    )

    for payload in payloads:
        result.fixtures_processed += 1
        fixture_id = payload.get("id", "?") if isinstance(payload, dict) else "?"
        try:
            outcome = process_fixture(payload, config, track_all=track_all, now=resolved_now)
        except EvBetsError as exc:
            message = f"Error processing fixture {fixture_id}: {exc}"
            logger.error("%s", message, exc_info=True)
            result.errors.append(message)
            continue
        result.opportunities.extend(outcome.opportunities)
        logger.debug(
            "Fixture %s: %d groups, %d opportunities, %d quotes dropped",
            outcome.fixture_id,
            outcome.groups_scored,
            len(outcome.opportunities),
            outcome.quotes_dropped,
        )

    if track_all:
        logger.info(
            "Pass complete: %d fixtures, %d tracked bets",
            result.fixtures_processed,
            result.opportunities_found,
        )
    else:
        logger.info(
            "Pass complete: %d fixtures, %d opportunities above %.1f%% EV",
            result.fixtures_processed,
            result.opportunities_found,
            config.min_ev_percent,
        )
    return result
