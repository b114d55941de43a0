from __future__ import annotations

import socket
from datetime import datetime

import pytest

from pagecast.net import TcpEndpoint
from pagecast.record import Color, PageRecord

T0 = datetime(2024, 3, 1, 12, 0, 0)


def make_record(record_id: int, timestamp: datetime = T0, duration_s: int = 60, text: str = "") -> PageRecord:
    record = PageRecord(record_id, timestamp, duration_s)
    for x, ch in enumerate(text):
        record.modify_cell(x, 1, ch, Color.YELLOW, Color.BLUE)
    return record


@pytest.fixture
def endpoints():
    """A connected (local, peer) pair; the peer side is a raw socket."""
    a, b = socket.socketpair()
    b.settimeout(2.0)
    local = TcpEndpoint(a, read_timeout_ms=500)
    yield local, b
    local.close()
    b.close()
