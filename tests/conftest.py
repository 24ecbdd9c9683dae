"""
Global pytest configuration and fixtures for solbatch tests.

This module provides:
- FakePool: an in-memory stand-in for PostgresConnectionPool
- Config factories writing real YAML files under tmp_path
- Template / SOL list helpers

Database integration tests (tests/test_connection_pools.py) use a real
Postgres only when SOLBATCH_TEST_PG_HOST is set.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import pytest
import yaml

from solbatch.models import AppConfig, ExtractionConfig

_SELECT_RE = re.compile(r"^SELECT (?P<cols>.+) FROM (?P<table>\S+) WHERE SOL_ID = :1$")


class FakePool:
    """
    In-memory replacement for the connection pool.

    ``tables`` maps a table (procedure) name to row dicts; every row needs a
    ``SOL_ID`` key. Procedures listed in ``fail_procedures`` raise on CALL,
    tables listed in ``fail_tables`` raise on SELECT.
    """

    def __init__(
        self,
        tables: Optional[dict[str, list[dict[str, Any]]]] = None,
        *,
        delay: float = 0.0,
        fail_procedures: Iterable[str] = (),
        fail_tables: Iterable[str] = (),
    ):
        self.tables = tables or {}
        self.delay = delay
        self.fail_procedures = set(fail_procedures)
        self.fail_tables = set(fail_tables)
        self.queries: list[tuple[str, tuple]] = []
        self.calls: list[tuple[str, str, tuple]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.healthy = True
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def is_healthy(self) -> bool:
        return self.initialized and self.healthy

    async def get_pool_stats(self) -> dict[str, Any]:
        return {"initialized": self.initialized, "max_in_flight": self.max_in_flight}

    async def _busy(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

    async def stream_rows(self, query: str, *args: Any, batch_size: int = 500):
        self.queries.append((query, args))
        m = _SELECT_RE.match(query)
        if m is None:
            raise ValueError(f"unexpected query: {query}")
        cols = [c.strip() for c in m.group("cols").split(",")]
        table = m.group("table")
        await self._busy()
        if table in self.fail_tables:
            raise RuntimeError(f'relation "{table}" does not exist')

        sol = args[0]
        rows = [
            tuple(row.get(c) for c in cols)
            for row in self.tables.get(table, [])
            if row.get("SOL_ID") == sol
        ]
        for i in range(0, len(rows), batch_size):
            yield rows[i : i + batch_size]

    async def call_procedure(self, package: str, procedure: str, *args: Any) -> str:
        self.calls.append((package, procedure, args))
        await self._busy()
        if procedure in self.fail_procedures:
            raise RuntimeError(f"ORA-20001: {package}.{procedure} failed for {args[0]}")
        return "CALL"


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


def write_yaml(path: Path, data: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def write_template(template_dir: Path, procedure: str, columns: list[str]) -> Path:
    template_dir.mkdir(parents=True, exist_ok=True)
    path = template_dir / f"{procedure}.csv"
    path.write_text(",".join(columns) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def app_config_data(tmp_path: Path) -> dict[str, Any]:
    sol_file = tmp_path / "sols.txt"
    sol_file.write_text("A\nB\n", encoding="utf-8")
    return {
        "dbUser": "batch",
        "dbPassword": "secret",
        "dbHost": "localhost",
        "dbPort": 5432,
        "dbSid": "branches",
        "concurrency": 4,
        "solFilePath": str(sol_file),
        "logFilePath": str(tmp_path / "logs"),
        "scaleIntervalSeconds": 0.01,
    }


@pytest.fixture
def run_config_data(tmp_path: Path) -> dict[str, Any]:
    return {
        "procedures": ["P1"],
        "packageName": "PKG_LOAD",
        "templatePath": str(tmp_path / "templates"),
        "spoolOutputPath": str(tmp_path / "spool"),
    }


@pytest.fixture
def make_app_config(app_config_data: dict[str, Any]) -> Callable[..., AppConfig]:
    def _make(**overrides: Any) -> AppConfig:
        return AppConfig.model_validate({**app_config_data, **overrides})

    return _make


@pytest.fixture
def make_run_config(run_config_data: dict[str, Any]) -> Callable[..., ExtractionConfig]:
    def _make(**overrides: Any) -> ExtractionConfig:
        return ExtractionConfig.model_validate({**run_config_data, **overrides})

    return _make
