from __future__ import annotations

import sys
from typing import Protocol, TextIO

from .record import PageRecord, render_lines


class Display(Protocol):
    def show(self, record: PageRecord) -> None: ...

    def clear(self) -> None: ...


class NullDisplay:
    def show(self, record: PageRecord) -> None:
        pass

    def clear(self) -> None:
        pass


class TextDisplay:
    """Writes the on-air page as plain text, one grid row per line."""

    RULE = "-" * 80

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stdout

    def show(self, record: PageRecord) -> None:
        out = self.stream
        out.write(
            f"Available from {record.timestamp.isoformat(sep=' ')}    "
            f"ID: {record.record_id}    Duration: {record.duration_s}\n"
        )
        out.write(f"            to {record.window_end.isoformat(sep=' ')}\n")
        out.write(self.RULE + "\n")
        for line in render_lines(record):
            out.write(line.rstrip() + "\n")
        out.flush()

    def clear(self) -> None:
        self.stream.write("\n")
        self.stream.flush()
