from __future__ import annotations

import threading
from typing import Iterable

from .record import PageRecord


class RecordStore:
    """The record set shared by connection handlers and the scheduler.

    Every access goes through one lock. Callers only hand over records that
    are fully built, and nothing here does I/O while holding the lock.

    An ID claimed with :meth:`reserve_id` counts as taken until the record
    carrying it is added with :meth:`extend`, so connections that are still
    mid-batch cannot accept the same ID twice. Reserved records stay
    invisible to :meth:`snapshot` until then.
    """

    def __init__(self, records: Iterable[PageRecord] = ()):
        self._lock = threading.Lock()
        self._records: list[PageRecord] = list(records)
        self._reserved: set[int] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def extend(self, records: Iterable[PageRecord]) -> None:
        batch = list(records)
        with self._lock:
            self._records.extend(batch)
            self._reserved.difference_update(r.record_id for r in batch)

    def _taken(self, record_id: int) -> bool:
        return record_id in self._reserved or any(r.record_id == record_id for r in self._records)

    def contains_id(self, record_id: int) -> bool:
        with self._lock:
            return self._taken(record_id)

    def reserve_id(self, record_id: int) -> bool:
        """Claim ``record_id``; False if it is stored or already claimed."""
        with self._lock:
            if self._taken(record_id):
                return False
            self._reserved.add(record_id)
            return True

    def snapshot(self) -> list[PageRecord]:
        with self._lock:
            return list(self._records)

    def remove(self, records: Iterable[PageRecord]) -> int:
        """Drop the given record objects (by identity); return how many were removed."""
        doomed = {id(r) for r in records}
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if id(r) not in doomed]
            return before - len(self._records)
