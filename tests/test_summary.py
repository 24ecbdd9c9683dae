"""
Unit tests for ProcedureSummaryAggregator.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from solbatch.core.summary import ProcedureSummaryAggregator
from solbatch.models import TaskOutcome, TaskStatus

T0 = datetime(2024, 1, 1, 12, 0, 0)


def outcome(
    procedure: str,
    start_offset: float,
    end_offset: float,
    status: TaskStatus = TaskStatus.SUCCESS,
    sol_id: str = "A",
) -> TaskOutcome:
    start = T0 + timedelta(seconds=start_offset)
    end = T0 + timedelta(seconds=end_offset)
    return TaskOutcome(
        sol_id=sol_id,
        procedure=procedure,
        start_time=start,
        end_time=end,
        elapsed=end - start,
        status=status,
        error_details="" if status == TaskStatus.SUCCESS else "boom",
    )


class TestProcedureSummaryAggregator:
    """Tests for ProcedureSummaryAggregator."""

    @pytest.mark.asyncio
    async def test_min_start_max_end(self) -> None:
        """The summary spans from the earliest start to the latest end."""
        agg = ProcedureSummaryAggregator(["P1"])
        await agg.record(outcome("P1", 5, 8))
        await agg.record(outcome("P1", 1, 3))
        await agg.record(outcome("P1", 2, 10))

        summary = agg.get("P1")

        assert summary.start_time == T0 + timedelta(seconds=1)
        assert summary.end_time == T0 + timedelta(seconds=10)
        assert summary.elapsed == timedelta(seconds=9)
        assert summary.task_count == 3
        assert summary.status == TaskStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_fail_is_sticky(self) -> None:
        """One failed task marks the procedure FAIL, whatever comes after."""
        agg = ProcedureSummaryAggregator(["P1"])
        await agg.record(outcome("P1", 0, 1))
        await agg.record(outcome("P1", 1, 2, TaskStatus.FAIL, sol_id="B"))
        await agg.record(outcome("P1", 2, 3))

        summary = agg.get("P1")

        assert summary.status == TaskStatus.FAIL
        assert summary.failed_count == 1

    @pytest.mark.asyncio
    async def test_first_outcome_failure(self) -> None:
        """A procedure whose first outcome fails starts out FAIL."""
        agg = ProcedureSummaryAggregator()
        await agg.record(outcome("P1", 0, 1, TaskStatus.FAIL))

        assert agg.get("P1").status == TaskStatus.FAIL
        assert agg.get("P1").failed_count == 1

    @pytest.mark.asyncio
    async def test_finalize_keeps_procedure_order(self) -> None:
        """Summaries come back in submission order, one per procedure."""
        agg = ProcedureSummaryAggregator(["P2", "P1"])
        await agg.record(outcome("P1", 0, 1))
        await agg.record(outcome("P2", 0, 1))
        await agg.record(outcome("P1", 1, 2))

        assert [s.procedure for s in agg.finalize()] == ["P2", "P1"]
        assert len(agg) == 2

    @pytest.mark.asyncio
    async def test_concurrent_records(self) -> None:
        """Concurrent workers recording into one procedure lose nothing."""
        agg = ProcedureSummaryAggregator(["P1"])

        await asyncio.gather(*(agg.record(outcome("P1", i, i + 1)) for i in range(50)))

        assert agg.get("P1").task_count == 50
        assert agg.get("P1").end_time == T0 + timedelta(seconds=50)
