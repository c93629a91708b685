"""
Prometheus metrics for the selection and outcome pipeline.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

=============================================================================
CARDINALITY CONTROL
=============================================================================

ALLOWED LABELS (bounded sets):
- job:      "selections_refresh", "outcome_backfill", "weights_warmup", ...
- status:   "ok", "error", "skipped"
- market:   "goals", "corners", "cards", "fouls", "offsides"
- reason:   "no_stats", "no_line", "no_coverage", "no_price"
- outcome:  "valid", "invalid"

FORBIDDEN AS LABELS:
- fixture_id, team_id, ticket_id, league_id
- error messages, timestamps, raw payloads

For debugging a specific fixture or ticket, use logs, NOT metric labels.
=============================================================================
"""

import logging
import time

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# JOB METRICS
# =============================================================================

job_runs_total = Counter(
    "ticketforge_job_runs_total",
    "Total job runs by job and status",
    ["job", "status"],
)

job_duration_ms = Histogram(
    "ticketforge_job_duration_ms",
    "Job duration in milliseconds",
    ["job"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000, 120000],
)

job_last_success_timestamp = Gauge(
    "ticketforge_job_last_success_timestamp",
    "Unix timestamp of the last successful run",
    ["job"],
)

# =============================================================================
# PIPELINE METRICS
# =============================================================================

fixture_validations_total = Counter(
    "ticketforge_fixture_validations_total",
    "Fixture stats validations by outcome",
    ["outcome"],
)

selections_upserted_total = Counter(
    "ticketforge_selections_upserted_total",
    "Selections written by the refresh job",
    ["market"],
)

selections_skipped_total = Counter(
    "ticketforge_selections_skipped_total",
    "Fixture/market pairs skipped by the refresh job",
    ["market", "reason"],
)

selections_failed_total = Counter(
    "ticketforge_selections_failed_total",
    "Fixtures that failed during the refresh job",
)

backfill_legs_total = Counter(
    "ticketforge_backfill_legs_total",
    "Backfill legs by outcome (inserted, skipped)",
    ["outcome"],
)

weights_cache_loads_total = Counter(
    "ticketforge_weights_cache_loads_total",
    "Performance weight cache loads by status",
    ["status"],
)

weights_cache_rows = Gauge(
    "ticketforge_weights_cache_rows",
    "Rows held in the performance weight cache",
)


def record_job_run(job: str, status: str, duration_ms: float) -> None:
    """
    Record a job run with status and duration.

    Args:
        job: Job identifier (selections_refresh, outcome_backfill, ...)
        status: "ok", "error", "skipped"
        duration_ms: Job duration in milliseconds
    """
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if duration_ms > 0:
            job_duration_ms.labels(job=job).observe(duration_ms)
        if status == "ok":
            job_last_success_timestamp.labels(job=job).set(time.time())
    except Exception as e:
        logger.warning(f"Failed to record job run metric: {e}")


def record_fixture_validation(is_valid: bool) -> None:
    try:
        fixture_validations_total.labels(outcome="valid" if is_valid else "invalid").inc()
    except Exception as e:
        logger.warning(f"Failed to record fixture validation metric: {e}")


def record_selection_upserted(market: str, count: int = 1) -> None:
    try:
        selections_upserted_total.labels(market=market).inc(count)
    except Exception as e:
        logger.warning(f"Failed to record selection upsert metric: {e}")


def record_selection_skipped(market: str, reason: str) -> None:
    try:
        selections_skipped_total.labels(market=market, reason=reason).inc()
    except Exception as e:
        logger.warning(f"Failed to record selection skip metric: {e}")


def record_selection_failed() -> None:
    try:
        selections_failed_total.inc()
    except Exception as e:
        logger.warning(f"Failed to record selection failure metric: {e}")


def record_backfill_legs(inserted: int, skipped: int) -> None:
    """Record leg counts from one backfill batch (dry runs are not recorded)."""
    try:
        if inserted:
            backfill_legs_total.labels(outcome="inserted").inc(inserted)
        if skipped:
            backfill_legs_total.labels(outcome="skipped").inc(skipped)
    except Exception as e:
        logger.warning(f"Failed to record backfill metric: {e}")


def record_weights_load(status: str, rows: int = 0) -> None:
    try:
        weights_cache_loads_total.labels(status=status).inc()
        if status == "ok":
            weights_cache_rows.set(rows)
    except Exception as e:
        logger.warning(f"Failed to record weights load metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
