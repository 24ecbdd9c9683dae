"""
Exception hierarchy and error classification.

Start-up failures (configuration, templates, database connect) are fatal and
map to process exit codes. Per-task failures are caught by the worker and
recorded as FAIL outcomes; they never abort the run.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterable

_SQLSTATE_RE = re.compile(r"\(\s*(\d{5}|[0-9A-Z]{5})\s*\)")


class SolBatchError(Exception):
    """Base class for all solbatch errors."""


class ConfigurationError(SolBatchError):
    """Invalid flag, config file, SOL list or mode."""


class TemplateError(ConfigurationError):
    """Unreadable or invalid column template."""


class DatabaseConnectError(SolBatchError):
    """The connection pool could not be established."""


class TaskActionError(SolBatchError):
    """A per-task action could not run (e.g. no template for the procedure)."""


def error_details(exc: BaseException) -> str:
    """Text recorded in an outcome's ``errorDetails`` column."""
    msg = str(exc).strip()
    return msg or type(exc).__name__


def classify_task_error(exc: BaseException) -> str:
    """
    Return a stable, low-cardinality category for a per-task failure.

    Prefers the SQLSTATE carried by asyncpg exceptions, then a ``(XXXXX)``
    code embedded in the message, then the exception class name.
    """
    sqlstate = getattr(exc, "sqlstate", None)
    if sqlstate:
        return f"SQLSTATE_{sqlstate}"

    m = _SQLSTATE_RE.search(str(exc or ""))
    if m:
        return f"SQLSTATE_{m.group(1)}"

    if isinstance(exc, OSError):
        return "FILE_IO"

    return type(exc).__name__


def tally_categories(categories: Iterable[str]) -> list[tuple[str, int]]:
    """Most-common-first failure tally for the end-of-run log line."""
    return Counter(categories).most_common()
