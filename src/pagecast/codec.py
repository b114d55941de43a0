from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator

from .constants import (
    ACCEPT_FORMAT,
    ACCEPT_PAYLOAD_FORMAT,
    ANNOUNCEMENT_FORMAT,
    CELL_FORMAT,
    COLUMNS,
    COUNT_FORMAT,
    HEADER_FORMAT,
    REJECT_FORMAT,
    REJECT_PAYLOAD_FORMAT,
    ROWS,
)
from .record import Cell, Color, PageRecord, is_valid_sign

KIND_SIZE = 1
COUNT_SIZE = struct.calcsize(COUNT_FORMAT)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
CELL_SIZE = struct.calcsize(CELL_FORMAT)
ACCEPT_PAYLOAD_SIZE = struct.calcsize(ACCEPT_PAYLOAD_FORMAT)
REJECT_PAYLOAD_SIZE = struct.calcsize(REJECT_PAYLOAD_FORMAT)


class ProtocolError(ValueError):
    pass


class StreamEndedEarly(ProtocolError):
    def __init__(self, expected: int, got: int):
        super().__init__(f"stream ended early: expected {expected} bytes, got {got}")
        self.expected = expected
        self.got = got


class MessageKind(enum.IntEnum):
    UNKNOWN = 0
    TRANSFER_RECORDS = 1
    RECORD_REJECTED = 2
    RECORD_TRANSFERRED = 3


class RejectReason(enum.IntEnum):
    DUPLICATE_ID = 1
    DUPLICATE_TIMESTAMP = 2


def _require(raw: bytes, size: int) -> None:
    if len(raw) < size:
        raise StreamEndedEarly(size, len(raw))
    if len(raw) > size:
        raise ProtocolError(f"expected {size} bytes, got {len(raw)}")


def decode_kind(raw: bytes) -> MessageKind:
    """Map a one-byte tag to its kind. Empty reads and unknown tags are UNKNOWN."""
    if len(raw) != KIND_SIZE:
        return MessageKind.UNKNOWN
    try:
        kind = MessageKind(raw[0])
    except ValueError:
        return MessageKind.UNKNOWN
    return kind


def decode_count(raw: bytes) -> int:
    _require(raw, COUNT_SIZE)
    (count,) = struct.unpack(COUNT_FORMAT, raw)
    return count


@dataclass(frozen=True, slots=True)
class Announcement:
    count: int

    def to_bytes(self) -> bytes:
        return struct.pack(ANNOUNCEMENT_FORMAT, MessageKind.TRANSFER_RECORDS, self.count)


@dataclass(frozen=True, slots=True)
class RecordAccepted:
    record_id: int

    def to_bytes(self) -> bytes:
        return struct.pack(ACCEPT_FORMAT, MessageKind.RECORD_TRANSFERRED, self.record_id)

    @staticmethod
    def from_payload(raw: bytes) -> "RecordAccepted":
        _require(raw, ACCEPT_PAYLOAD_SIZE)
        (record_id,) = struct.unpack(ACCEPT_PAYLOAD_FORMAT, raw)
        return RecordAccepted(record_id)


@dataclass(frozen=True, slots=True)
class RecordRejected:
    record_id: int
    reason: RejectReason

    def to_bytes(self) -> bytes:
        return struct.pack(REJECT_FORMAT, MessageKind.RECORD_REJECTED, self.record_id, self.reason)

    @staticmethod
    def from_payload(raw: bytes) -> "RecordRejected":
        _require(raw, REJECT_PAYLOAD_SIZE)
        record_id, reason = struct.unpack(REJECT_PAYLOAD_FORMAT, raw)
        try:
            return RecordRejected(record_id, RejectReason(reason))
        except ValueError:
            raise ProtocolError(f"unknown reject reason {reason}") from None


@dataclass(frozen=True, slots=True)
class PageHeader:
    record_id: int
    timestamp: datetime
    duration_s: int
    cell_count: int

    @staticmethod
    def for_record(record: PageRecord, cell_count: int) -> "PageHeader":
        return PageHeader(record.record_id, record.timestamp, record.duration_s, cell_count)

    def to_bytes(self) -> bytes:
        ts = self.timestamp
        return struct.pack(
            HEADER_FORMAT,
            self.record_id,
            ts.year,
            ts.month,
            ts.day,
            ts.hour,
            ts.minute,
            ts.second,
            self.duration_s,
            self.cell_count,
        )

    @staticmethod
    def from_bytes(raw: bytes) -> "PageHeader":
        _require(raw, HEADER_SIZE)
        record_id, year, month, day, hour, minute, second, duration_s, cell_count = struct.unpack(
            HEADER_FORMAT, raw
        )
        try:
            timestamp = datetime(year, month, day, hour, minute, second)
        except ValueError as e:
            raise ProtocolError(f"invalid timestamp in header: {e}") from None
        if duration_s < 0:
            raise ProtocolError(f"negative duration in header: {duration_s}")
        if cell_count > COLUMNS * ROWS:
            raise ProtocolError(f"cell count {cell_count} exceeds grid size")
        return PageHeader(record_id, timestamp, duration_s, cell_count)

    def new_record(self) -> PageRecord:
        """Return a record with a fully blanked grid, ready for cell deltas."""
        return PageRecord(self.record_id, self.timestamp, self.duration_s)


@dataclass(frozen=True, slots=True)
class CellDelta:
    x: int
    y: int
    sign: str
    fore: Color
    back: Color

    @staticmethod
    def from_cell(cell: Cell) -> "CellDelta":
        return CellDelta(cell.x, cell.y, cell.sign, cell.fore, cell.back)

    def to_bytes(self) -> bytes:
        return struct.pack(CELL_FORMAT, self.x, self.y, ord(self.sign), self.fore, self.back)

    @staticmethod
    def from_bytes(raw: bytes) -> "CellDelta":
        _require(raw, CELL_SIZE)
        x, y, code_unit, fore, back = struct.unpack(CELL_FORMAT, raw)
        if not (0 <= x < COLUMNS and 0 <= y < ROWS):
            raise ProtocolError(f"cell ({x}, {y}) outside {COLUMNS}x{ROWS} grid")
        fore_color = Color.from_index(fore)
        back_color = Color.from_index(back)
        if fore_color is None or back_color is None:
            raise ProtocolError(f"color index out of range: fore={fore} back={back}")
        sign = chr(code_unit)
        if not is_valid_sign(sign):
            raise ProtocolError(f"unusable sign code unit 0x{code_unit:04x}")
        return CellDelta(x, y, sign, fore_color, back_color)

    def apply_to(self, record: PageRecord) -> None:
        record.modify_cell(self.x, self.y, self.sign, self.fore, self.back)


def encode_record(record: PageRecord) -> Iterator[bytes]:
    """Yield the page header followed by one delta per non-empty cell."""
    cells = record.non_empty_cells()
    yield PageHeader.for_record(record, len(cells)).to_bytes()
    for cell in cells:
        yield CellDelta.from_cell(cell).to_bytes()
