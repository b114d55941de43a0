"""Page records: an 80x25 grid of colored characters with a broadcast window.

The text form used for file import/export is::

    id;timestamp;duration;cell#cell#...

where each cell is ``x,y,fore,back,sign`` and only non-empty cells are
listed. The sign is always the last field of a cell and exactly one
character long, so it may itself be ``,``, ``#`` or ``;``.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Iterator

from .constants import COLUMNS, DEFAULT_DURATION_S, ROWS

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
MAX_CODE_UNIT = 0xFFFF
SURROGATES_START = 0xD800
SURROGATES_END = 0xDFFF

_CELL_RE = re.compile(r"(\d+),(\d+),(\d+),(\d+),(.)", re.DOTALL)


class Color(enum.IntEnum):
    BLACK = 0
    DARK_BLUE = 1
    DARK_GREEN = 2
    DARK_CYAN = 3
    DARK_RED = 4
    DARK_MAGENTA = 5
    DARK_YELLOW = 6
    GRAY = 7
    DARK_GRAY = 8
    BLUE = 9
    GREEN = 10
    CYAN = 11
    RED = 12
    MAGENTA = 13
    YELLOW = 14
    WHITE = 15

    @classmethod
    def from_index(cls, value: int) -> "Color | None":
        try:
            return cls(value)
        except ValueError:
            return None


DEFAULT_SIGN = " "
DEFAULT_FORE = Color.GRAY
DEFAULT_BACK = Color.BLACK


def is_valid_sign(sign: str) -> bool:
    """One UTF-16 code unit that is neither a surrogate nor a line break.

    Surrogates cannot be written as UTF-8 text and line breaks would split
    an exported record across lines.
    """
    if len(sign) != 1:
        return False
    code = ord(sign)
    if code > MAX_CODE_UNIT or SURROGATES_START <= code <= SURROGATES_END:
        return False
    return sign.splitlines() == [sign]


def _check_sign(sign: str) -> None:
    if not is_valid_sign(sign):
        raise ValueError(f"sign must be one non-surrogate UTF-16 code unit other than a line break, got {sign!r}")


@dataclass(slots=True)
class Cell:
    x: int
    y: int
    sign: str = DEFAULT_SIGN
    fore: Color = DEFAULT_FORE
    back: Color = DEFAULT_BACK
    is_empty: bool = True

    def __post_init__(self) -> None:
        _check_sign(self.sign)
        self.fore = Color(self.fore)
        self.back = Color(self.back)

    def set_sign(self, sign: str) -> None:
        _check_sign(sign)
        self.sign = sign
        self.is_empty = False

    def set_fore_color(self, color: Color) -> None:
        self.fore = Color(color)
        self.is_empty = False

    def set_back_color(self, color: Color) -> None:
        self.back = Color(color)
        self.is_empty = False

    def apply(self, sign: str, fore: Color, back: Color) -> None:
        self.set_sign(sign)
        self.set_fore_color(fore)
        self.set_back_color(back)

    def export(self) -> str:
        return f"{self.x},{self.y},{int(self.fore)},{int(self.back)},{self.sign}"

    @staticmethod
    def parse(text: str) -> "Cell | None":
        m = _CELL_RE.fullmatch(text)
        if m is None:
            return None
        return _cell_from_match(m)


def _cell_from_match(m: re.Match[str]) -> Cell | None:
    x, y, fore_idx, back_idx = (int(g) for g in m.group(1, 2, 3, 4))
    sign = m.group(5)
    fore = Color.from_index(fore_idx)
    back = Color.from_index(back_idx)
    if fore is None or back is None:
        return None
    if not (0 <= x < COLUMNS and 0 <= y < ROWS) or not is_valid_sign(sign):
        return None
    return Cell(x, y, sign, fore, back, is_empty=False)


def blank_grid(columns: int = COLUMNS, rows: int = ROWS) -> list[list[Cell]]:
    """Return a fully populated grid of empty cells, indexed ``grid[y][x]``."""
    return [[Cell(x, y) for x in range(columns)] for y in range(rows)]


def now_seconds() -> datetime:
    return datetime.now().replace(microsecond=0)


@dataclass(eq=False, slots=True)
class PageRecord:
    """One broadcast page.

    Timestamps are naive local datetimes with whole-second precision, which
    is all the wire format can carry. Two records are equal when their IDs
    are equal, regardless of content.
    """

    record_id: int
    timestamp: datetime
    duration_s: int = DEFAULT_DURATION_S
    grid: list[list[Cell]] = field(default_factory=blank_grid)

    def __post_init__(self) -> None:
        if not INT32_MIN <= self.record_id <= INT32_MAX:
            raise ValueError(f"record id out of int32 range: {self.record_id}")
        if not 0 <= self.duration_s <= INT32_MAX:
            raise ValueError(f"duration out of range: {self.duration_s}")
        if self.timestamp.tzinfo is not None:
            raise ValueError("timestamp must be a naive local datetime")
        self.timestamp = self.timestamp.replace(microsecond=0)
        if len(self.grid) != ROWS or any(len(row) != COLUMNS for row in self.grid):
            raise ValueError(f"grid must be {COLUMNS}x{ROWS}")

    @classmethod
    def blank(
        cls,
        record_id: int,
        timestamp: datetime | None = None,
        duration_s: int = DEFAULT_DURATION_S,
    ) -> "PageRecord":
        return cls(record_id, timestamp or now_seconds(), duration_s)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PageRecord):
            return NotImplemented
        return other.record_id == self.record_id

    def __hash__(self) -> int:
        return hash(self.record_id)

    def __repr__(self) -> str:
        return (
            f"PageRecord(id={self.record_id}, timestamp={self.timestamp.isoformat()}, "
            f"duration_s={self.duration_s})"
        )

    @property
    def window_end(self) -> datetime:
        return self.timestamp + timedelta(seconds=self.duration_s)

    def is_active(self, now: datetime) -> bool:
        return self.timestamp <= now <= self.window_end

    def is_expired(self, now: datetime) -> bool:
        return now > self.window_end

    def cell(self, x: int, y: int) -> Cell:
        if not (0 <= x < COLUMNS and 0 <= y < ROWS):
            raise IndexError(f"cell ({x}, {y}) outside {COLUMNS}x{ROWS} grid")
        return self.grid[y][x]

    def modify_cell(self, x: int, y: int, sign: str, fore: Color, back: Color) -> None:
        self.cell(x, y).apply(sign, fore, back)

    def cells(self) -> Iterator[Cell]:
        for row in self.grid:
            yield from row

    def non_empty_cells(self) -> list[Cell]:
        return [c for c in self.cells() if not c.is_empty]

    def has_timestamp_in(self, records: Iterable["PageRecord"]) -> bool:
        return any(r.timestamp == self.timestamp for r in records)

    def export(self) -> str:
        cells = "#".join(c.export() for c in self.non_empty_cells())
        return f"{self.record_id};{self.timestamp.isoformat(timespec='seconds')};{self.duration_s};{cells}"

    @staticmethod
    def parse(text: str) -> "PageRecord | None":
        parts = text.split(";", 3)
        if len(parts) != 4:
            return None
        id_text, ts_text, duration_text, body = parts
        try:
            record_id = int(id_text)
            duration_s = int(duration_text)
            timestamp = datetime.fromisoformat(ts_text)
        except ValueError:
            return None
        if timestamp.tzinfo is not None:
            return None
        try:
            record = PageRecord(record_id, timestamp, duration_s)
        except ValueError:
            return None

        pos = 0
        while pos < len(body):
            m = _CELL_RE.match(body, pos)
            if m is None:
                return None
            cell = _cell_from_match(m)
            if cell is None:
                return None
            record.grid[cell.y][cell.x] = cell
            pos = m.end()
            if pos == len(body):
                break
            if body[pos] != "#":
                return None
            pos += 1
            if pos == len(body):
                # trailing separator with no cell after it
                return None
        return record


def parse_record(text: str) -> PageRecord | None:
    return PageRecord.parse(text)


def export_record(record: PageRecord) -> str:
    return record.export()


def render_lines(record: PageRecord) -> list[str]:
    return ["".join(c.sign for c in row) for row in record.grid]
