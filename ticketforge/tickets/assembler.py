"""
Ticket assembly from a ranked candidate pool.

The first attempt walks the pool in rank order; later attempts shuffle it.
A leg is accepted while the running product stays under 1.15x the mode's
max odds, with at most one leg per (fixture, market). The first attempt
landing inside [min_odds, max_odds] with enough legs wins. Otherwise the
attempt closest to the band midpoint with enough legs is returned.
"""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.models import GeneratedTicket, OptimizedSelection, utc_now
from ticketforge.tickets.modes import (
    CandidateLeg,
    RankedLeg,
    TicketModeConfig,
    get_mode,
    rank_candidates,
)
from ticketforge.weights.store import PerformanceWeightStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 50
OVERSHOOT_FACTOR = 1.15


class NoCandidatesError(Exception):
    """The candidate pool cannot form a ticket for the requested mode."""

    def __init__(self, message: str, pool_size: int = 0):
        super().__init__(message)
        self.pool_size = pool_size


@dataclass
class AssembledTicket:
    legs: list[CandidateLeg]
    total_odds: float
    attempts: int
    in_target: bool
    pool_size: int = 0
    mode: str = ""
    preferred_legs: int = 0

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "total_odds": self.total_odds,
            "legs": [leg.to_dict() for leg in self.legs],
            "attempts": self.attempts,
            "in_target": self.in_target,
            "pool_size": self.pool_size,
            "preferred_legs": self.preferred_legs,
        }


@dataclass
class _Attempt:
    legs: list[RankedLeg] = field(default_factory=list)
    product: float = 1.0


def _build_attempt(pool: Sequence[RankedLeg], mode: TicketModeConfig) -> _Attempt:
    attempt = _Attempt()
    used: set[tuple[int, str]] = set()
    ceiling = mode.max_odds * OVERSHOOT_FACTOR

    for ranked in pool:
        if len(attempt.legs) >= mode.max_legs:
            break
        key = (ranked.leg.fixture_id, ranked.leg.market)
        if key in used:
            continue
        product = attempt.product * ranked.leg.odds
        if product > ceiling:
            continue
        attempt.legs.append(ranked)
        attempt.product = product
        used.add(key)
        if _in_target(attempt, mode):
            break

    return attempt


def _in_target(attempt: _Attempt, mode: TicketModeConfig) -> bool:
    return len(attempt.legs) >= mode.min_legs and mode.min_odds <= attempt.product <= mode.max_odds


def _to_ticket(attempt: _Attempt, mode: TicketModeConfig, attempts: int, pool_size: int) -> AssembledTicket:
    return AssembledTicket(
        legs=[r.leg for r in attempt.legs],
        total_odds=round(attempt.product, 2),
        attempts=attempts,
        in_target=_in_target(attempt, mode),
        pool_size=pool_size,
        mode=mode.name,
        preferred_legs=sum(1 for r in attempt.legs if r.preferred),
    )


def assemble_ticket(
    candidates: Iterable[CandidateLeg],
    mode: TicketModeConfig,
    store: PerformanceWeightStore,
    rng: Optional[random.Random] = None,
    max_attempts: int = MAX_ATTEMPTS,
) -> AssembledTicket:
    """
    Build a ticket for `mode` from candidate legs.

    Raises:
        NoCandidatesError: too few eligible legs, or no attempt reached min_legs
    """
    rng = rng or random.Random()
    pool = rank_candidates(candidates, mode, store)

    if len(pool) < mode.min_legs:
        raise NoCandidatesError(
            f"Not enough valid candidates (found {len(pool)}, need at least {mode.min_legs})",
            pool_size=len(pool),
        )

    target_mid = (mode.min_odds + mode.max_odds) / 2
    best: Optional[_Attempt] = None
    best_distance = float("inf")

    for attempt_no in range(1, max_attempts + 1):
        if attempt_no == 1:
            order = pool
        else:
            order = list(pool)
            rng.shuffle(order)

        attempt = _build_attempt(order, mode)
        if _in_target(attempt, mode):
            ticket = _to_ticket(attempt, mode, attempt_no, len(pool))
            logger.info(
                f"[TICKETS] {mode.name}: {len(ticket.legs)} legs @ {ticket.total_odds} "
                f"after {attempt_no} attempts"
            )
            return ticket

        if len(attempt.legs) >= mode.min_legs:
            distance = abs(attempt.product - target_mid)
            if distance < best_distance:
                best, best_distance = attempt, distance

    if best is None:
        raise NoCandidatesError(
            f"Could not build a {mode.name} ticket after {max_attempts} attempts",
            pool_size=len(pool),
        )

    ticket = _to_ticket(best, mode, max_attempts, len(pool))
    logger.info(
        f"[TICKETS] {mode.name}: no attempt in [{mode.min_odds}, {mode.max_odds}], "
        f"returning closest ({ticket.total_odds})"
    )
    return ticket


async def load_candidates(
    session: AsyncSession,
    fixture_ids: Optional[Sequence[int]] = None,
    now: Optional[datetime] = None,
) -> list[CandidateLeg]:
    """
    Pre-match selections for upcoming fixtures, one per (fixture, market, side, line).

    When several bookmakers quote the same line the highest price is kept.
    """
    now = now or utc_now()
    query = (
        select(OptimizedSelection)
        .where(OptimizedSelection.is_live.is_(False))
        .where(OptimizedSelection.utc_kickoff > now)
    )
    if fixture_ids:
        query = query.where(OptimizedSelection.fixture_id.in_(list(fixture_ids)))
    result = await session.execute(query)

    best: dict[tuple, CandidateLeg] = {}
    for row in result.scalars().all():
        leg = CandidateLeg.from_selection(row)
        key = (leg.fixture_id, leg.market, leg.side, leg.line)
        if key not in best or leg.odds > best[key].odds:
            best[key] = leg
    return list(best.values())


async def generate_ticket(
    session: AsyncSession,
    mode_name: str,
    store: PerformanceWeightStore,
    fixture_ids: Optional[Sequence[int]] = None,
    seed: Optional[int] = None,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[GeneratedTicket, AssembledTicket]:
    """
    Assemble a ticket from stored selections and persist it to generated_tickets.

    Raises:
        ValueError: unknown mode
        NoCandidatesError: the pool cannot form a ticket
    """
    mode = get_mode(mode_name)
    await store.load_weights(session)

    candidates = await load_candidates(session, fixture_ids, now=now)
    ticket = assemble_ticket(candidates, mode, store, rng=random.Random(seed))

    record = GeneratedTicket(
        id=str(uuid.uuid4()),
        user_id=user_id,
        total_odds=ticket.total_odds,
        legs=[leg.to_dict() for leg in ticket.legs],
        created_at=now or utc_now(),
    )
    session.add(record)
    await session.commit()

    logger.info(f"[TICKETS] Saved ticket {record.id} ({mode_name}, {len(ticket.legs)} legs)")
    return record, ticket
