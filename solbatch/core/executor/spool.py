"""
Spool file naming, cell rendering and CSV writing for extract tasks.
"""

import csv
from pathlib import Path
from typing import IO, Any, Iterable, Optional, Sequence

SPOOL_SUFFIX = ".spool"
SPLIT_KEY_SEPARATOR = "_"

# Characters that cannot appear inside a single path component.
_PATH_UNSAFE = str.maketrans({"/": "-", "\\": "-", "\0": ""})


def render_value(value: Any) -> str:
    """
    Render one cell: NULL is the empty string, bytes are hex, everything else
    uses the value's default ``str()`` form as returned by the driver.
    """
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def render_row(record: Sequence[Any], width: int) -> list[str]:
    return [render_value(record[i]) for i in range(width)]


def split_key(row: Sequence[str], key_indexes: Sequence[int]) -> str:
    """``_``-joined string values of the split columns."""
    return SPLIT_KEY_SEPARATOR.join(row[i] for i in key_indexes)


def spool_file_name(procedure: str, sol_id: str, key: Optional[str] = None) -> str:
    """``<procedure>_<solID>.spool`` or ``<procedure>_<solID>_<key>.spool``."""
    parts = [procedure, sol_id] if key is None else [procedure, sol_id, key]
    return "_".join(parts).translate(_PATH_UNSAFE) + SPOOL_SUFFIX


class SpoolWriter:
    """
    Header-first CSV writer for one spool file.

    Methods are synchronous; callers run them through ``asyncio.to_thread``.
    """

    def __init__(self, path: Path, header: Sequence[str]):
        self.path = Path(path)
        self.header = list(header)
        self.rows_written = 0
        self._file: Optional[IO[str]] = None
        self._writer: Any = None

    def open(self) -> "SpoolWriter":
        self._file = open(self.path, "w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._file, lineterminator="\n")
        self._writer.writerow(self.header)
        return self

    def write_rows(self, rows: Iterable[Sequence[str]]) -> None:
        if self._writer is None:
            raise RuntimeError(f"spool {self.path} is not open")
        for row in rows:
            self._writer.writerow(row)
            self.rows_written += 1

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._writer = None


def write_spool(path: Path, header: Sequence[str], rows: Iterable[Sequence[str]]) -> int:
    """Write a complete spool file in one go; returns the data row count."""
    writer = SpoolWriter(path, header).open()
    try:
        writer.write_rows(rows)
    finally:
        writer.close()
    return writer.rows_written
