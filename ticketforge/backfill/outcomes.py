"""
Ticket outcome backfill.

Creates PENDING ticket_leg_outcomes rows and a zeroed ticket_outcomes rollup
for generated tickets that predate outcome tracking. Settlement happens
elsewhere.

Each call processes at most one batch of tickets ordered by created_at and
returns `next_cursor` (the last ticket's created_at) so the caller can resume
after a timeout. Tickets that already have a rollup row are skipped, and
writes ignore duplicates on the leg key, so re-running a batch is safe.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.config import get_settings
from ticketforge.db_utils import upsert_many
from ticketforge.jobs.tracking import record_run
from ticketforge.models import (
    Fixture,
    GeneratedTicket,
    OptimizerRunLog,
    TicketLegOutcome,
    TicketOutcome,
    utc_now,
)
from ticketforge.telemetry.metrics import record_backfill_legs

logger = logging.getLogger(__name__)

RUN_TYPE = "ticket-outcomes-backfill"
MAX_ERROR_SAMPLES = 5

LEG_CONFLICT_COLUMNS = ["ticket_id", "fixture_id", "market", "side", "line"]

_LINE_TOKEN = re.compile(r"([\d.]+)")


class BackfillParamsError(ValueError):
    """Invalid backfill invocation parameters."""


@dataclass(frozen=True)
class ParsedLeg:
    side: str
    line: float
    derived_from_selection: bool


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_leg_selection(leg: Mapping[str, Any]) -> ParsedLeg:
    """
    Resolve a stored leg's side and line.

    Explicit `side`/`line` fields win when present and the line is positive.
    Otherwise both come from the free-text selection: side is "under" when
    the text starts with "under" or "u", else "over"; line is the first
    numeric token, or 0 when there is none. Callers skip legs with line <= 0.
    """
    side = leg.get("side")
    line = _to_float(leg.get("line"))
    if side and line is not None and line > 0:
        return ParsedLeg(side=str(side).lower(), line=line, derived_from_selection=False)

    text = str(leg.get("selection") or "").strip().lower()
    side = "under" if text.startswith("u") else "over"
    match = _LINE_TOKEN.search(text)
    parsed = _to_float(match.group(1)) if match else None
    return ParsedLeg(side=side, line=parsed or 0.0, derived_from_selection=True)


def selection_key(market: str, side: str, line: float) -> str:
    return f"{market}|{side}|{line:g}".lower()


def parse_cursor(cursor: Optional[str]) -> Optional[datetime]:
    """ISO timestamp -> naive UTC datetime."""
    if cursor is None or cursor == "":
        return None
    try:
        parsed = datetime.fromisoformat(cursor.strip().replace("Z", "+00:00"))
    except ValueError:
        raise BackfillParamsError(f"Invalid cursor '{cursor}': expected an ISO timestamp") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_target_ids(target_ids: Optional[str | Sequence[str]]) -> list[str]:
    if not target_ids:
        return []
    if isinstance(target_ids, str):
        target_ids = target_ids.split(",")
    return [t.strip() for t in target_ids if t and t.strip()]


def _leg_fixture_id(leg: Mapping[str, Any]) -> Optional[int]:
    raw = leg.get("fixture_id", leg.get("fixtureId"))
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _leg_kickoff(leg: Mapping[str, Any]) -> Optional[datetime]:
    raw = leg.get("utc_kickoff") or leg.get("start")
    if not raw:
        return None
    try:
        return parse_cursor(str(raw))
    except BackfillParamsError:
        return None


def build_leg_rows(
    ticket: GeneratedTicket,
    fixtures: Mapping[int, Fixture],
) -> tuple[list[dict], int]:
    """
    Leg outcome rows for one ticket.

    Returns:
        (rows, skipped) where skipped counts legs with no usable line or fixture
    """
    rows: list[dict] = []
    skipped = 0
    seen: set[tuple] = set()

    for leg in ticket.legs or []:
        fixture_id = _leg_fixture_id(leg)
        parsed = parse_leg_selection(leg)
        market = str(leg.get("market") or "").lower()
        if parsed.line <= 0 or fixture_id is None or not market:
            skipped += 1
            continue

        key = (fixture_id, market, parsed.side, parsed.line)
        if key in seen:
            skipped += 1
            continue
        seen.add(key)

        fixture = fixtures.get(fixture_id)
        rows.append({
            "ticket_id": ticket.id,
            "user_id": ticket.user_id,
            "fixture_id": fixture_id,
            "league_id": fixture.league_id if fixture else leg.get("league_id"),
            "market": market,
            "side": parsed.side,
            "line": parsed.line,
            "odds": _to_float(leg.get("odds")),
            "selection_key": selection_key(market, parsed.side, parsed.line),
            "selection": leg.get("selection"),
            "source": leg.get("source") or "prematch",
            "picked_at": ticket.created_at,
            "kickoff_at": fixture.kickoff_at if fixture else _leg_kickoff(leg),
            "result_status": "PENDING",
            "derived_from_selection": parsed.derived_from_selection,
        })

    return rows, skipped


def _rollup_row(ticket: GeneratedTicket, legs_total: int) -> dict:
    return {
        "ticket_id": ticket.id,
        "user_id": ticket.user_id,
        "legs_total": legs_total,
        "legs_settled": 0,
        "legs_won": 0,
        "legs_lost": 0,
        "legs_pushed": 0,
        "legs_void": 0,
        "ticket_status": "PENDING",
        "total_odds": ticket.total_odds,
        "created_at": utc_now(),
    }


async def backfill_ticket_outcomes(
    session: AsyncSession,
    batch_size: Optional[int] = None,
    cursor: Optional[str] = None,
    target_ids: Optional[str | Sequence[str]] = None,
    dry_run: bool = False,
) -> dict:
    """
    Backfill one batch of tickets.

    Args:
        session: Database session
        batch_size: Tickets per batch (default 50, capped at 200)
        cursor: ISO timestamp; only tickets created strictly after it are read
        target_ids: Explicit ticket IDs (comma-separated string or list);
            mutually exclusive with cursor
        dry_run: Compute counts without writing

    Returns:
        Dict with counts and next_cursor (None when the batch was empty or in
        target_ids mode)

    Raises:
        BackfillParamsError: invalid parameter combination or values
    """
    settings = get_settings()
    start_time = time.time()

    if batch_size is None:
        batch_size = settings.BACKFILL_DEFAULT_BATCH_SIZE
    if batch_size < 1:
        raise BackfillParamsError(f"batch_size must be positive, got {batch_size}")
    batch_size = min(batch_size, settings.BACKFILL_MAX_BATCH_SIZE)

    ids = parse_target_ids(target_ids)
    if cursor and ids:
        raise BackfillParamsError("cursor and target_ids are mutually exclusive")
    after = parse_cursor(cursor)

    if ids:
        result = await session.execute(
            select(GeneratedTicket)
            .where(GeneratedTicket.id.in_(ids[:batch_size]))
            .order_by(GeneratedTicket.created_at, GeneratedTicket.id)
        )
    else:
        query = select(GeneratedTicket).order_by(GeneratedTicket.created_at, GeneratedTicket.id).limit(batch_size)
        if after is not None:
            query = query.where(GeneratedTicket.created_at > after)
        result = await session.execute(query)
    tickets = result.scalars().all()

    next_cursor = None
    if tickets and not ids:
        next_cursor = tickets[-1].created_at.isoformat()

    summary = {
        "mode": "target_ids" if ids else "cursor",
        "batch_size": batch_size,
        "scanned_tickets": len(tickets),
        "next_cursor": next_cursor,
    }

    if not tickets:
        logger.info("[BACKFILL] No more tickets to process")
        summary.update(
            processed_tickets=0, inserted_legs=0, skipped_legs=0, skipped_already_done=0,
            failed_tickets=0, errors=[],
        )
        if dry_run:
            summary.update(dry_run=True, would_process_tickets=0, would_insert_legs=0, would_skip_legs=0)
        summary["duration_ms"] = int((time.time() - start_time) * 1000)
        return summary

    ticket_ids = [t.id for t in tickets]
    result = await session.execute(
        select(TicketOutcome.ticket_id).where(TicketOutcome.ticket_id.in_(ticket_ids))
    )
    done = set(result.scalars().all())
    pending = [t for t in tickets if t.id not in done]
    summary["skipped_already_done"] = len(done)

    fixture_ids = {fid for t in pending for fid in (_leg_fixture_id(leg) for leg in t.legs or []) if fid is not None}
    fixtures: dict[int, Fixture] = {}
    if fixture_ids:
        result = await session.execute(select(Fixture).where(Fixture.id.in_(sorted(fixture_ids))))
        fixtures = {f.id: f for f in result.scalars().all()}

    logger.info(
        f"[BACKFILL] Batch of {len(tickets)} tickets: {len(pending)} need backfill, "
        f"{len(done)} already done, {len(fixtures)} fixtures loaded"
    )

    if dry_run:
        would_insert = 0
        would_skip = 0
        for ticket in pending:
            rows, skipped = build_leg_rows(ticket, fixtures)
            would_insert += len(rows)
            would_skip += skipped
        summary.update(
            dry_run=True,
            would_process_tickets=len(pending),
            would_insert_legs=would_insert,
            would_skip_legs=would_skip,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        logger.info(
            f"[BACKFILL] Dry run: would process {len(pending)} tickets, "
            f"{would_insert} legs, skip {would_skip}"
        )
        return summary

    # Detach loaded rows so a per-ticket rollback does not expire them
    session.expunge_all()

    processed = 0
    inserted = 0
    skipped_legs = 0
    failed = 0
    errors: list[str] = []

    for ticket in pending:
        try:
            rows, skipped = build_leg_rows(ticket, fixtures)
            await upsert_many(
                session, TicketLegOutcome, rows, conflict_columns=LEG_CONFLICT_COLUMNS, ignore_duplicates=True
            )
            await upsert_many(
                session, TicketOutcome, [_rollup_row(ticket, len(rows))],
                conflict_columns=["ticket_id"], ignore_duplicates=True,
            )
            await session.commit()
            processed += 1
            inserted += len(rows)
            skipped_legs += skipped
        except Exception as e:
            await session.rollback()
            failed += 1
            error_msg = f"Ticket {ticket.id}: {str(e)}"
            logger.error(f"[BACKFILL] Error processing: {error_msg}")
            errors.append(error_msg)

    record_backfill_legs(inserted, skipped_legs)
    summary.update(
        processed_tickets=processed,
        inserted_legs=inserted,
        skipped_legs=skipped_legs,
        failed_tickets=failed,
        errors=errors[:MAX_ERROR_SAMPLES],
        duration_ms=int((time.time() - start_time) * 1000),
    )
    logger.info(
        f"[BACKFILL] Done: {processed} tickets, {inserted} legs, {skipped_legs} skipped, {failed} failed"
    )
    return summary


async def get_last_backfill_cursor(session: AsyncSession) -> Optional[str]:
    """next_cursor recorded by the most recent drain run, if any."""
    result = await session.execute(
        select(OptimizerRunLog)
        .where(OptimizerRunLog.run_type == RUN_TYPE)
        .order_by(OptimizerRunLog.started_at.desc(), OptimizerRunLog.id.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    if last is None or not last.scope:
        return None
    return last.scope.get("next_cursor")


async def drain_ticket_outcomes(
    session: AsyncSession,
    max_batches: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> dict:
    """
    Run several cursor batches back to back, resuming from the last drain.

    Stops at the end of the table or after max_batches. The final cursor is
    stored on the run-log row so the next drain continues from there.
    """
    settings = get_settings()
    max_batches = max_batches or settings.BACKFILL_MAX_BATCHES_PER_RUN
    started_at = utc_now()

    start_cursor = await get_last_backfill_cursor(session)
    cursor = start_cursor
    totals = {"batches": 0, "processed_tickets": 0, "inserted_legs": 0, "skipped_legs": 0, "failed_tickets": 0}

    for _ in range(max_batches):
        batch = await backfill_ticket_outcomes(session, batch_size=batch_size, cursor=cursor)
        totals["batches"] += 1
        for key in ("processed_tickets", "inserted_legs", "skipped_legs", "failed_tickets"):
            totals[key] += batch.get(key, 0)
        if batch["next_cursor"] is None:
            break
        cursor = batch["next_cursor"]
        if batch["scanned_tickets"] < batch["batch_size"]:
            break

    await record_run(
        session,
        RUN_TYPE,
        started_at,
        scope={"start_cursor": start_cursor, "next_cursor": cursor},
        scanned=totals["processed_tickets"],
        upserted=totals["inserted_legs"],
        skipped=totals["skipped_legs"],
        failed=totals["failed_tickets"],
    )
    totals["next_cursor"] = cursor
    return totals
