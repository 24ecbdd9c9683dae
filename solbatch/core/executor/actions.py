"""
Per-task actions and the mode dispatcher.

- ExtractAction: templated SELECT against the table named after the
  procedure, written to one spool file or one file per split key
- InsertAction: ``CALL <package>.<procedure>(:1)`` with the SOL id

Both are plain awaitables over a shared connection pool. Errors propagate to
the worker, which records them on the task outcome.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Protocol

from solbatch.core.executor.spool import (
    SpoolWriter,
    render_row,
    spool_file_name,
    split_key,
    write_spool,
)
from solbatch.errors import ConfigurationError, TaskActionError
from solbatch.models import ColumnSpec, ExtractionConfig, RunMode, Task

if TYPE_CHECKING:
    from solbatch.connectors.postgres_pool import PostgresConnectionPool

logger = logging.getLogger(__name__)


class RowSource(Protocol):
    """The part of the connection pool the actions rely on."""

    def stream_rows(
        self, query: str, *args: Any, batch_size: int = ...
    ) -> AsyncIterator[List[Any]]: ...

    async def call_procedure(self, package: str, procedure: str, *args: Any) -> Any: ...


@dataclass
class ActionResult:
    """What an action produced, for logging."""

    files: List[Path] = field(default_factory=list)
    rows: int = 0


def build_select(procedure: str, columns: List[ColumnSpec]) -> str:
    """``SELECT c1, c2, ... FROM <procedure> WHERE SOL_ID = :1``."""
    col_list = ", ".join(c.name for c in columns)
    return f"SELECT {col_list} FROM {procedure} WHERE SOL_ID = :1"


class ExtractAction:
    """Run the templated SELECT for one task and write its spool file(s)."""

    def __init__(
        self,
        pool: "RowSource | PostgresConnectionPool",
        config: ExtractionConfig,
        templates: Dict[str, List[ColumnSpec]],
    ):
        self.pool = pool
        self.config = config
        self.templates = templates

    async def __call__(self, task: Task) -> ActionResult:
        cols = self.templates.get(task.procedure)
        if not cols:
            raise TaskActionError(f"missing template for procedure {task.procedure}")

        col_names = [c.name for c in cols]
        query = build_select(task.procedure, cols)
        split_cols = self.config.split_rules.get(task.procedure) or []
        missing = [c for c in split_cols if c not in col_names]
        if missing:
            raise TaskActionError(
                f"split columns {missing} not in template for {task.procedure}"
            )

        logger.info("📥 Extracting %s for SOL %s", task.procedure, task.sol_id)
        start = time.perf_counter()
        async with aclosing(
            self.pool.stream_rows(
                query, task.sol_id, batch_size=self.config.fetch_batch_size
            )
        ) as rows:
            if split_cols:
                key_indexes = [col_names.index(c) for c in split_cols]
                result = await self._write_split(task, col_names, key_indexes, rows)
            else:
                result = await self._write_full(task, col_names, rows)

        logger.debug(
            "🧑‍💻 %s (SOL %s): %d rows in %.0f ms",
            task.procedure,
            task.sol_id,
            result.rows,
            (time.perf_counter() - start) * 1000.0,
        )
        return result

    async def _write_full(
        self,
        task: Task,
        col_names: List[str],
        rows: AsyncIterator[List[Any]],
    ) -> ActionResult:
        path = self.config.spool_output_path / spool_file_name(task.procedure, task.sol_id)
        writer = SpoolWriter(path, col_names)
        await asyncio.to_thread(writer.open)
        try:
            async for batch in rows:
                rendered = [render_row(r, len(col_names)) for r in batch]
                await asyncio.to_thread(writer.write_rows, rendered)
        finally:
            writer.close()

        logger.info("📝 Wrote full file: %s (%d rows)", path, writer.rows_written)
        return ActionResult(files=[path], rows=writer.rows_written)

    async def _write_split(
        self,
        task: Task,
        col_names: List[str],
        key_indexes: List[int],
        rows: AsyncIterator[List[Any]],
    ) -> ActionResult:
        groups: Dict[str, List[List[str]]] = {}
        async for batch in rows:
            for r in batch:
                row = render_row(r, len(col_names))
                groups.setdefault(split_key(row, key_indexes), []).append(row)

        result = ActionResult()
        for key, group_rows in groups.items():
            name = spool_file_name(task.procedure, task.sol_id, key)
            path = self.config.spool_output_path / name
            written = await asyncio.to_thread(write_spool, path, col_names, group_rows)
            result.files.append(path)
            result.rows += written
            logger.info("✂️ Wrote split file: %s (%d rows)", name, written)
        return result


class InsertAction:
    """Invoke the package procedure for one task."""

    def __init__(self, pool: "RowSource | PostgresConnectionPool", package_name: str):
        self.pool = pool
        self.package_name = package_name

    async def __call__(self, task: Task) -> ActionResult:
        logger.info(
            "🔁 Inserting: %s.%s for SOL %s",
            self.package_name,
            task.procedure,
            task.sol_id,
        )
        await self.pool.call_procedure(self.package_name, task.procedure, task.sol_id)
        return ActionResult()


class TaskActionDispatcher:
    """
    Selects the per-task action once, from the run mode.

    Mode is fixed for the run, so workers never mix extract and insert.
    """

    def __init__(
        self,
        mode: RunMode,
        pool: "RowSource | PostgresConnectionPool",
        config: ExtractionConfig,
        templates: Optional[Dict[str, List[ColumnSpec]]] = None,
    ):
        try:
            self.mode = RunMode(mode)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid mode {mode!r}. Valid values are 'E' for Extract and 'I' for Insert."
            ) from e

        if self.mode is RunMode.EXTRACT:
            self._action: Any = ExtractAction(pool, config, templates or {})
        else:
            self._action = InsertAction(pool, config.package_name)

    async def dispatch(self, task: Task) -> ActionResult:
        return await self._action(task)
