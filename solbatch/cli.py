#!/usr/bin/env python3
"""Run a batch extract (E) or insert (I) across every SOL and procedure."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import traceback
from pathlib import Path
from typing import Optional, Sequence

from solbatch.config import settings
from solbatch.connectors.postgres_pool import PostgresConnectionPool
from solbatch.core.inputs import (
    describe,
    load_app_config,
    load_extraction_config,
    load_templates,
    read_sols,
    validate_split_rules,
)
from solbatch.core.orchestrator import Orchestrator, RunReport
from solbatch.errors import ConfigurationError, DatabaseConnectError
from solbatch.models import RunMode

logger = logging.getLogger("solbatch")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_DB_CONNECT = 3
EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solbatch",
        description="Extract table data to spool files, or run insert procedures, per SOL.",
    )
    parser.add_argument(
        "--appCfg",
        dest="app_cfg",
        required=True,
        help="Path to the main application configuration file.",
    )
    parser.add_argument(
        "--runCfg",
        dest="run_cfg",
        required=True,
        help="Path to the extraction configuration file.",
    )
    parser.add_argument(
        "--mode",
        required=True,
        choices=[m.value for m in RunMode],
        help="Mode of operation: E - Extract, I - Insert.",
    )
    return parser


def configure_logging() -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=settings.LOG_FORMAT,
        handlers=handlers,
    )
    # Keep driver internals quiet.
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


async def _run(args: argparse.Namespace) -> RunReport:
    mode = RunMode(args.mode)
    app_cfg = load_app_config(Path(args.app_cfg))
    run_cfg = load_extraction_config(Path(args.run_cfg))

    # Every procedure needs a readable template, whatever the mode.
    templates = load_templates(run_cfg.procedures, run_cfg.template_path)
    validate_split_rules(run_cfg.split_rules, templates)

    sols = read_sols(app_cfg.sol_file_path)
    pool = PostgresConnectionPool.from_app_config(app_cfg)
    orchestrator = Orchestrator(
        app_config=app_cfg,
        run_config=run_cfg,
        mode=mode,
        pool=pool,
        sols=sols,
        templates=templates,
    )

    logger.info("Connecting to %s", describe(app_cfg))
    await pool.initialize()
    try:
        if not await pool.is_healthy():
            raise DatabaseConnectError(f"health check failed for {describe(app_cfg)}")
        report = await orchestrator.run()
        logger.debug("Pool stats at end of run: %s", await pool.get_pool_stats())
        return report
    finally:
        await pool.close()


def _fatal(kind: str, exc: BaseException) -> None:
    logger.error("%s: %s", kind, exc)
    if settings.APP_DEBUG:
        traceback.print_exception(exc)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    try:
        report = asyncio.run(_run(args))
    except ConfigurationError as e:
        _fatal("Configuration error", e)
        return EXIT_CONFIG
    except DatabaseConnectError as e:
        _fatal("Database connection error", e)
        return EXIT_DB_CONNECT
    except KeyboardInterrupt:
        print("[solbatch] interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED

    if report.failed:
        logger.warning(
            "Completed with %d failed tasks; see the outcome log for details",
            len(report.failed),
        )
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
