from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .record import PageRecord

logger = logging.getLogger(__name__)


def export_records(path: str | Path, records: Iterable[PageRecord]) -> int:
    lines = [r.export() for r in records]
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        for line in lines:
            f.write(line + "\n")
    logger.info("exported %d records to %s", len(lines), path)
    return len(lines)


def append_records(path: str | Path, records: Iterable[PageRecord]) -> int:
    """Add records at the end of ``path`` without touching the lines already there."""
    lines = [r.export() for r in records]
    path = Path(path)
    needs_break = False
    if path.exists() and path.stat().st_size > 0:
        with open(path, "rb") as f:
            f.seek(-1, 2)
            needs_break = f.read(1) != b"\n"
    with open(path, "a", encoding="utf-8", newline="\n") as f:
        if needs_break:
            f.write("\n")
        for line in lines:
            f.write(line + "\n")
    logger.info("appended %d records to %s", len(lines), path)
    return len(lines)


def import_records(path: str | Path) -> list[PageRecord]:
    """Read records from a file written by :func:`export_records`.

    Malformed lines and repeated IDs are skipped with a warning.
    """
    records: list[PageRecord] = []
    seen: set[int] = set()
    with open(path, "r", encoding="utf-8", newline="\n") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.rstrip("\n")
            if not line.strip():
                continue
            record = PageRecord.parse(line)
            if record is None:
                logger.warning("%s:%d: malformed record skipped", path, lineno)
                continue
            if record.record_id in seen:
                logger.warning("%s:%d: record id %d already imported", path, lineno, record.record_id)
                continue
            seen.add(record.record_id)
            records.append(record)
    logger.info("imported %d records from %s", len(records), path)
    return records
