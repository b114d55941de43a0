from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from .constants import ACK_ATTEMPTS, ACK_POLL_INTERVAL_S, COLUMNS, DEFAULT_DURATION_S
from .receiver import RecordReceiver
from .record import Color, PageRecord, now_seconds
from .sender import RecordSender, TransferSummary
from .store import RecordStore


@dataclass(frozen=True, slots=True)
class LoopbackResult:
    summary: TransferSummary
    stored: int


def sample_records(
    count: int,
    *,
    start: datetime | None = None,
    duration_s: int = DEFAULT_DURATION_S,
    first_id: int = 1,
) -> list[PageRecord]:
    """Build ``count`` records one second apart, each titled with its ID."""
    start = start or now_seconds()
    records = []
    for i in range(count):
        record = PageRecord.blank(first_id + i, start + timedelta(seconds=i), duration_s)
        title = f"PAGE {record.record_id}"[:COLUMNS]
        for x, ch in enumerate(title):
            record.modify_cell(x, 0, ch, Color.YELLOW, Color.DARK_BLUE)
        records.append(record)
    return records


def run_loopback(
    records: Sequence[PageRecord],
    *,
    store: RecordStore | None = None,
    attempts: int = ACK_ATTEMPTS,
    poll_interval_s: float = ACK_POLL_INTERVAL_S,
    receiver_poll_s: float = 0.05,
) -> LoopbackResult:
    store = store if store is not None else RecordStore()
    receiver = RecordReceiver(store, "127.0.0.1", 0, poll_interval_s=receiver_poll_s)
    with receiver:
        host, port = receiver.address
        with RecordSender(host, port, attempts=attempts, poll_interval_s=poll_interval_s) as sender:
            if not sender.connect():
                raise ConnectionError(f"loopback receiver at {host}:{port} unreachable")
            summary = sender.send_records(records)
    return LoopbackResult(summary=summary, stored=len(store))
