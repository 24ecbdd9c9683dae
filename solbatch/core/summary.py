"""
Per-procedure roll-up of task outcomes.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

from solbatch.models import ProcedureSummary, TaskOutcome


class ProcedureSummaryAggregator:
    """
    Shared procedure -> ProcedureSummary mapping.

    Workers call ``record()`` after each task; every update happens under one
    ``asyncio.Lock``. ``finalize()`` is only meaningful once all workers have
    exited.
    """

    def __init__(self, procedures: Optional[Iterable[str]] = None):
        self._order: List[str] = list(procedures or [])
        self._summaries: Dict[str, ProcedureSummary] = {}
        self._lock = asyncio.Lock()

    async def record(self, outcome: TaskOutcome) -> ProcedureSummary:
        async with self._lock:
            summary = self._summaries.get(outcome.procedure)
            if summary is None:
                summary = ProcedureSummary.from_outcome(outcome)
                self._summaries[outcome.procedure] = summary
            else:
                summary.absorb(outcome)
            return summary

    def get(self, procedure: str) -> Optional[ProcedureSummary]:
        return self._summaries.get(procedure)

    def __len__(self) -> int:
        return len(self._summaries)

    def finalize(self) -> List[ProcedureSummary]:
        """Summaries in procedure submission order, then any others by name."""
        ordered = [self._summaries[p] for p in self._order if p in self._summaries]
        extra = sorted(set(self._summaries) - set(self._order))
        ordered.extend(self._summaries[p] for p in extra)
        return ordered
