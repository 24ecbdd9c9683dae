"""
Input loaders: run configuration files, SOL list, column templates.

Everything here runs before the worker pool starts, so every failure is a
ConfigurationError (or its TemplateError subclass) and fatal to the run.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from solbatch.errors import ConfigurationError, TemplateError
from solbatch.models import AppConfig, ColumnSpec, ExtractionConfig

logger = logging.getLogger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

# Header cells that mark a "one row per column" template layout.
_NAME_HEADERS = ("name", "column_name")


def _load_model(path: Path, model: Type[_ModelT], what: str) -> _ModelT:
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"{what} file does not exist: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read {what} file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{what} file {path} must contain a mapping")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {what} file {path}:\n{e}") from e


def load_app_config(path: Path) -> AppConfig:
    """Load and validate the application config (YAML or JSON)."""
    return _load_model(path, AppConfig, "application configuration")


def load_extraction_config(path: Path) -> ExtractionConfig:
    """Load and validate the extraction/insert config (YAML or JSON)."""
    return _load_model(path, ExtractionConfig, "extraction configuration")


def read_sols(path: Path) -> List[str]:
    """
    Read SOL identifiers, one per line.

    Blank lines and ``#`` comments are skipped; duplicates are dropped
    (first occurrence wins) so no (SOL, procedure) pair runs twice.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError as e:
        raise ConfigurationError(f"Failed to read SOL IDs from {path}: {e}") from e

    sols: List[str] = []
    seen: set[str] = set()
    for raw in lines:
        sol = raw.strip()
        if not sol or sol.startswith("#"):
            continue
        if sol in seen:
            logger.warning("Duplicate SOL %s in %s ignored", sol, path)
            continue
        seen.add(sol)
        sols.append(sol)
    return sols


def read_columns_from_csv(path: Path) -> List[ColumnSpec]:
    """
    Derive the ordered column list from a template CSV.

    Two layouts are understood:
    - a ``name`` (or ``column_name``) header: one row per output column, the
      other cells kept as string attributes;
    - anything else: the header row itself is the column list.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            rows = [row for row in csv.reader(f) if any(cell.strip() for cell in row)]
    except OSError as e:
        raise TemplateError(f"Failed to read template {path}: {e}") from e
    except csv.Error as e:
        raise TemplateError(f"Malformed template {path}: {e}") from e

    if not rows:
        raise TemplateError(f"Template {path} is empty")

    header = [cell.strip() for cell in rows[0]]
    lowered = [cell.lower() for cell in header]
    name_idx = next((lowered.index(h) for h in _NAME_HEADERS if h in lowered), None)

    columns: List[ColumnSpec] = []
    if name_idx is None:
        columns = [ColumnSpec(name=cell) for cell in header if cell]
    else:
        for line_no, row in enumerate(rows[1:], start=2):
            cells = [cell.strip() for cell in row]
            name = cells[name_idx] if name_idx < len(cells) else ""
            if not name:
                raise TemplateError(f"Template {path} line {line_no}: missing column name")
            attrs = {
                header[i]: cells[i]
                for i in range(min(len(header), len(cells)))
                if i != name_idx and header[i]
            }
            columns.append(ColumnSpec(name=name, attributes=attrs))

    if not columns:
        raise TemplateError(f"Template {path} defines no columns")

    names = [c.name for c in columns]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise TemplateError(f"Template {path} repeats columns: {dupes}")

    return columns


def load_templates(
    procedures: Iterable[str],
    template_path: Path,
) -> Dict[str, List[ColumnSpec]]:
    """Load ``<template_path>/<procedure>.csv`` for every procedure."""
    templates: Dict[str, List[ColumnSpec]] = {}
    for proc in procedures:
        tmpl_path = Path(template_path) / f"{proc}.csv"
        if not tmpl_path.is_file():
            raise TemplateError(f"Failed to read template for {proc}: {tmpl_path} not found")
        templates[proc] = read_columns_from_csv(tmpl_path)
        logger.debug("Template %s: %d columns", proc, len(templates[proc]))
    return templates


def validate_split_rules(
    split_rules: Dict[str, List[str]],
    templates: Dict[str, List[ColumnSpec]],
) -> None:
    """Every split column must be a template column of its procedure."""
    for proc, split_cols in split_rules.items():
        cols = templates.get(proc)
        if cols is None:
            raise ConfigurationError(f"splitRules[{proc}] has no template")
        names = {c.name for c in cols}
        missing = [c for c in split_cols if c not in names]
        if missing:
            raise ConfigurationError(
                f"splitRules[{proc}] names columns not in its template: {missing}"
            )


def describe(cfg: AppConfig) -> str:
    """One-line, password-free description of an AppConfig for start-up logs."""
    return (
        f"{cfg.db_user}@{cfg.db_host}:{cfg.db_port}/{cfg.db_name} "
        f"concurrency={cfg.concurrency} minWorkers={cfg.min_workers}"
    )
