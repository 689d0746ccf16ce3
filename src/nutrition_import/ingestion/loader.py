"""Record loader — header-bound, lazy streaming of delimited text files."""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from nutrition_import.errors import MissingColumnsError, SourceAbsentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RowShape:
    """Describes the logical fields of a source file.

    Parameters
    ----------
    name:
        Human-readable name used in log lines.
    columns:
        Maps each logical field to the header names that may carry it,
        in order of preference.  Header matching is case-insensitive.
    required:
        Logical fields that must be present in the header row.
    """

    name: str
    columns: dict[str, tuple[str, ...]]
    required: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class RawRow:
    """One data row bound to logical field names.  Empty cells are ``None``."""

    line: int
    values: dict[str, str | None]

    def get(self, key: str) -> str | None:
        return self.values.get(key)


def _normalize_header(raw: str) -> str:
    return raw.replace("\ufeff", "").strip().lower()


def _resolve_columns(path: Path, header: list[str], shape: RowShape) -> dict[str, int]:
    """Map logical fields to column indices using the header row."""
    positions = {_normalize_header(h): i for i, h in reversed(list(enumerate(header)))}
    resolved: dict[str, int] = {}
    for field_name, aliases in shape.columns.items():
        for alias in aliases:
            idx = positions.get(alias.lower())
            if idx is not None:
                resolved[field_name] = idx
                break

    missing = sorted(shape.required - resolved.keys())
    if missing:
        raise MissingColumnsError(path, missing)
    return resolved


class RecordReader:
    """Forward-only iterator over the rows of one delimited file.

    The file is opened on first iteration and closed once exhausted.
    A reader can be consumed exactly once.
    """

    def __init__(self, path: Path, shape: RowShape, *, delimiter: str = ",") -> None:
        self.path = path
        self.shape = shape
        self.delimiter = delimiter
        self.malformed = 0
        self._consumed = False
        self._undecodable = 0

    def __iter__(self) -> Iterator[RawRow]:
        if self._consumed:
            raise RuntimeError(f"{self.path.name} has already been read")
        self._consumed = True
        return self._rows()

    def _rows(self) -> Iterator[RawRow]:
        with open(self.path, "rb") as fh:
            reader = csv.reader(self._decoded_lines(fh), delimiter=self.delimiter)
            try:
                header = next(reader)
            except StopIteration:
                logger.warning("%s is empty", self.path)
                return
            columns = _resolve_columns(self.path, header, self.shape)

            while True:
                try:
                    cells = next(reader)
                except StopIteration:
                    break
                except csv.Error as exc:
                    self.malformed += 1
                    logger.warning("Skipping unreadable row near line %d of %s: %s",
                                   reader.line_num + self._undecodable, self.path.name, exc)
                    continue

                if not cells or all(not c.strip() for c in cells):
                    continue

                values: dict[str, str | None] = {}
                for field_name, idx in columns.items():
                    raw = cells[idx].strip() if idx < len(cells) else ""
                    values[field_name] = raw or None
                yield RawRow(line=reader.line_num + self._undecodable, values=values)

    def _decoded_lines(self, fh: BinaryIO) -> Iterator[str]:
        """Decode the file line by line; lines that are not valid UTF-8 are skipped and counted."""
        for lineno, raw in enumerate(fh, start=1):
            try:
                yield raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                self.malformed += 1
                self._undecodable += 1
                logger.warning("Skipping undecodable line %d of %s: %s", lineno, self.path.name, exc)


def read_records(path: str | Path, shape: RowShape, *, delimiter: str = ",") -> RecordReader:
    """Open *path* for lazy reading according to *shape*.

    Raises
    ------
    SourceAbsentError
        When *path* does not exist.  Raised eagerly, before iteration.
    MissingColumnsError
        On first iteration, when a required header is not present.
    """
    path = Path(path)
    if not path.is_file():
        raise SourceAbsentError(path)
    return RecordReader(path, shape, delimiter=delimiter)


def first_existing(root: Path, candidates: tuple[str, ...]) -> Path:
    """Return the first candidate file under *root* that exists.

    Falls back to the first candidate so the caller reports a meaningful
    path when none exist.
    """
    for name in candidates:
        path = root / name
        if path.is_file():
            return path
    return root / candidates[0]
