# records.py: key/value CSV rows -> flat records
from __future__ import annotations
import csv
import io
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

from docfill.errors import InvalidPathError
from docfill.services.paths import Path

log = logging.getLogger(__name__)

COMMENT_PREFIX = "#"
HEADER = ("key", "value")


@dataclass(frozen=True)
class FlatRecord:
    path: Path
    value: str
    line: int = 0
    comment: Optional[str] = None


def _is_header(cells: List[str]) -> bool:
    return len(cells) >= 2 and tuple(c.strip().lower() for c in cells[:2]) == HEADER


def iter_records(text: str, delimiter: str = ",") -> Iterator[FlatRecord]:
    """Yield records in file order; malformed rows are skipped with a warning.

    Rows are ``path,value[,comment]``. Blank rows, ``#`` rows and a leading
    ``key,value[,comment]`` header are ignored. Values may be quoted to contain the
    delimiter. An empty value is a present-but-empty field.
    """
    reader = csv.reader(io.StringIO(text.lstrip("﻿")), delimiter=delimiter, quotechar='"')
    seen_data = False
    for cells in reader:
        line = reader.line_num
        if not cells or all(not c.strip() for c in cells):
            continue
        if cells[0].lstrip().startswith(COMMENT_PREFIX):
            continue
        if not seen_data and _is_header(cells):
            seen_data = True
            continue
        seen_data = True
        if len(cells) not in (2, 3):
            log.warning("Skipping line %d: expected 2 or 3 columns, got %d", line, len(cells))
            continue
        key, value = cells[0].strip(), cells[1].strip()
        comment = cells[2].strip() if len(cells) == 3 and cells[2].strip() else None
        try:
            path = Path.parse(key)
        except InvalidPathError as e:
            log.warning("Skipping line %d: %s", line, e)
            continue
        yield FlatRecord(path, value, line, comment)


def read_records(text: str, delimiter: str = ",") -> List[FlatRecord]:
    return list(iter_records(text, delimiter))


def records_from_pairs(pairs: Iterable[tuple]) -> List[FlatRecord]:
    """Build records from ``(path, value)`` pairs; used by callers that already hold data."""
    out = []
    for i, (key, value) in enumerate(pairs, start=1):
        out.append(FlatRecord(Path.of(key), "" if value is None else str(value), i))
    return out


def flatten(data, prefix: Optional[Path] = None) -> Iterator[tuple]:
    """``{"user": {"tags": ["a"]}}`` -> ``("user.tags.0", "a")``; leaves only.

    Empty mappings and lists yield nothing, so ``{"tags": []}`` reads the same as a
    record without ``tags``: the key resolves as missing and ``each`` takes its else branch.
    """
    prefix = prefix or Path()
    if isinstance(data, dict):
        for key, value in data.items():
            yield from flatten(value, prefix.join(str(key)))
    elif isinstance(data, (list, tuple)):
        for index, value in enumerate(data):
            yield from flatten(value, prefix.join(index))
    elif not prefix.is_root():
        yield prefix, data


def records_from_mapping(data: dict) -> List[FlatRecord]:
    """Records from already-nested data (JSON request bodies)."""
    pairs = []
    for path, value in flatten(data):
        if isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((path, value))
    return records_from_pairs(pairs)
