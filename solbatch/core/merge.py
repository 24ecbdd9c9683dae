"""
Post-extract merge of per-SOL spool files into one file per procedure.

Runs after every worker has exited, whether or not tasks failed. Spool files
are matched by name (``<procedure>_<sol>.spool`` or
``<procedure>_<sol>_<key>.spool``) against the known procedures and SOL
list. Runs whose (procedure, SOL) pairs could produce the same file name
are rejected before they start (see ``find_spool_name_conflicts``), so each
spool file has exactly one owner.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from solbatch.core.executor.spool import SPOOL_SUFFIX, spool_file_name
from solbatch.models import ExtractionConfig

logger = logging.getLogger(__name__)


def _stem(procedure: str, sol_id: str) -> str:
    return spool_file_name(procedure, sol_id)[: -len(SPOOL_SUFFIX)]


def find_spool_name_conflicts(
    procedures: Sequence[str],
    split_procedures: Iterable[str],
    sols: Sequence[str],
) -> List[Tuple[Tuple[str, str], Tuple[str, str]]]:
    """
    (procedure, SOL) pairs whose spool files could share a name.

    Two pairs conflict when their file stems are equal, or when one stem
    extends a split pair's stem by ``_``: ``P1`` split for SOL ``A`` writes
    ``P1_A_<key>.spool``, which ``P1_A`` for SOL ``B`` would also produce.
    """
    split = set(split_procedures)
    owners: Dict[str, Tuple[str, str]] = {}
    conflicts: List[Tuple[Tuple[str, str], Tuple[str, str]]] = []
    for proc in procedures:
        for sol in sols:
            stem = _stem(proc, sol)
            owner = owners.setdefault(stem, (proc, sol))
            if owner != (proc, sol):
                conflicts.append((owner, (proc, sol)))

    for stem, owner in owners.items():
        for i, ch in enumerate(stem):
            if ch != "_":
                continue
            other = owners.get(stem[:i])
            if other is not None and other != owner and other[0] in split:
                conflicts.append((other, owner))
    return conflicts


def index_split_spools(
    spool_dir: Path,
    procedures: Sequence[str],
    sols: Sequence[str],
) -> Dict[str, Dict[str, List[Path]]]:
    """
    procedure -> split key -> spool paths, paths in SOL submission order.
    """
    prefixes: List[Tuple[str, str, int]] = []
    for proc in procedures:
        for sol_idx, sol in enumerate(sols):
            prefixes.append((_stem(proc, sol) + "_", proc, sol_idx))
    prefixes.sort(key=lambda p: len(p[0]), reverse=True)

    found: Dict[str, Dict[str, List[Tuple[int, Path]]]] = {}
    for path in sorted(spool_dir.glob(f"*{SPOOL_SUFFIX}")):
        stem = path.name[: -len(SPOOL_SUFFIX)]
        for prefix, proc, sol_idx in prefixes:
            if stem.startswith(prefix) and len(stem) > len(prefix):
                key = stem[len(prefix) :]
                found.setdefault(proc, {}).setdefault(key, []).append((sol_idx, path))
                break

    return {
        proc: {key: [p for _, p in sorted(entries)] for key, entries in keys.items()}
        for proc, keys in found.items()
    }


def _append(target: Path, sources: Sequence[Path]) -> int:
    """Concatenate spool files, writing the first header only."""
    rows = 0
    header_written = False
    with open(target, "w", encoding="utf-8", newline="") as out:
        writer = csv.writer(out, lineterminator="\n")
        for src in sources:
            with open(src, "r", encoding="utf-8", newline="") as f:
                reader = csv.reader(f)
                header = next(reader, None)
                if header is None:
                    continue
                if not header_written:
                    writer.writerow(header)
                    header_written = True
                for row in reader:
                    writer.writerow(row)
                    rows += 1
    return rows


def merge_spools(config: ExtractionConfig, sols: Sequence[str]) -> List[Path]:
    """
    Merge spool files per procedure (and per split key).

    Returns:
        Paths of the merged files written
    """
    opts = config.merge
    if not opts.enabled:
        logger.info("Spool merge disabled")
        return []

    spool_dir = config.spool_output_path
    out_dir = config.merge_output_path
    out_dir.mkdir(parents=True, exist_ok=True)

    split_procs = [p for p in config.procedures if config.split_rules.get(p)]
    split_index = (
        index_split_spools(spool_dir, split_procs, sols) if split_procs else {}
    )
    written: List[Path] = []

    for proc in config.procedures:
        targets: Dict[Path, List[Path]] = {}
        if proc in split_procs:
            for key, paths in sorted(split_index.get(proc, {}).items()):
                targets[out_dir / f"{proc}_{key}{opts.extension}"] = paths
        else:
            paths = [spool_dir / spool_file_name(proc, sol) for sol in sols]
            paths = [p for p in paths if p.is_file()]
            if paths:
                targets[out_dir / f"{proc}{opts.extension}"] = paths

        for target, sources in targets.items():
            rows = _append(target, sources)
            written.append(target)
            logger.info(
                "🔗 Merged %d spool files into %s (%d rows)", len(sources), target, rows
            )
            if opts.remove_spools:
                for src in sources:
                    if src != target:
                        src.unlink(missing_ok=True)

    return written
