"""Tests for scheduled job wrappers and metric recording."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest

from ticketforge import scheduler
from ticketforge.telemetry.metrics import get_metrics_text, record_job_run


def _session_cm(session):
    @asynccontextmanager
    async def fake_get_session_with_retry(*args, **kwargs):
        yield session

    return fake_get_session_with_retry


class TestSchedulerJobs:
    @pytest.mark.asyncio
    async def test_refresh_job_ok(self, session):
        result = {"scanned": 2, "upserted": 3, "failed": 0, "errors": []}
        with patch.object(scheduler, "get_session_with_retry", _session_cm(session)), \
             patch("ticketforge.selection.refresh_job.refresh_selections", AsyncMock(return_value=result)), \
             patch.object(scheduler, "record_job_run") as record:
            await scheduler.selections_refresh_job()

        assert record.call_args.kwargs["status"] == "ok"

    @pytest.mark.asyncio
    async def test_refresh_job_overlap_is_skipped(self, session):
        result = {"skipped": True, "reason": "concurrent_run_in_progress"}
        with patch.object(scheduler, "get_session_with_retry", _session_cm(session)), \
             patch("ticketforge.selection.refresh_job.refresh_selections", AsyncMock(return_value=result)), \
             patch.object(scheduler, "record_job_run") as record:
            await scheduler.selections_refresh_job()

        assert record.call_args.kwargs["status"] == "skipped"

    @pytest.mark.asyncio
    async def test_backfill_job_error_is_contained(self, session):
        with patch.object(scheduler, "get_session_with_retry", _session_cm(session)), \
             patch("ticketforge.backfill.outcomes.drain_ticket_outcomes", AsyncMock(side_effect=RuntimeError("x"))), \
             patch.object(scheduler, "record_job_run") as record:
            await scheduler.outcome_backfill_job()

        assert record.call_args.kwargs["status"] == "error"

    @pytest.mark.asyncio
    async def test_weights_warmup_job(self, session):
        with patch.object(scheduler, "get_session_with_retry", _session_cm(session)), \
             patch.object(scheduler, "record_job_run") as record:
            await scheduler.weights_warmup_job()

        assert record.call_args.kwargs["status"] == "ok"


class TestMetrics:
    def test_job_run_is_exported(self):
        record_job_run("selections_refresh", "ok", 12.0)
        content, content_type = get_metrics_text()
        assert 'ticketforge_job_runs_total{job="selections_refresh",status="ok"}' in content
        assert content_type.startswith("text/plain")
