"""
Unit tests for ProgressCounter.
"""

from __future__ import annotations

import pytest

from solbatch.core.progress import ProgressCounter, format_elapsed


class TestProgressCounter:
    """Tests for ProgressCounter."""

    def test_increment_counts_up_to_total(self) -> None:
        """Each increment adds one; completion is stamped at the last one."""
        progress = ProgressCounter(3)

        assert [progress.increment() for _ in range(3)] == [1, 2, 3]
        assert progress.done
        assert progress.percent == 100.0
        assert progress.completed_at is not None

    def test_overflow_rejected(self) -> None:
        """More completions than tasks is a bug, not a percentage above 100."""
        progress = ProgressCounter(1)
        progress.increment()

        with pytest.raises(RuntimeError):
            progress.increment()
        assert progress.current == 1

    def test_empty_run_is_complete(self) -> None:
        progress = ProgressCounter(0)

        assert progress.done
        assert progress.percent == 100.0

    def test_progress_line_logged(self, caplog) -> None:
        """Every completion logs a progress line by default."""
        caplog.set_level("INFO", logger="solbatch.core.progress")
        progress = ProgressCounter(4)

        progress.increment()

        assert "Progress: 1/4 (25.0%)" in caplog.text

    def test_format_elapsed(self) -> None:
        assert format_elapsed(0) == "0:00:00"
        assert format_elapsed(3725.9) == "1:02:05"
        assert format_elapsed(-1) == "0:00:00"
