from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from .constants import TICK_PERIOD_S
from .display import Display, NullDisplay
from .record import PageRecord
from .store import RecordStore
from .timing import Ticker

logger = logging.getLogger(__name__)


class OnAirScheduler:
    """Picks the record that is on air and evicts expired ones.

    Each tick removes every record whose window has closed, then selects
    among the records whose window covers ``now``. A selected record is
    only replaced by one with a strictly later timestamp; on equal
    timestamps the record selected first keeps the air.
    """

    def __init__(
        self,
        store: RecordStore,
        display: Display | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        period_s: float = TICK_PERIOD_S,
    ):
        self.store = store
        self.display = display or NullDisplay()
        self.clock = clock
        self._ticker = Ticker(period_s)
        self._enabled = threading.Event()
        self._enabled.set()
        self._lock = threading.Lock()
        self._selected: PageRecord | None = None
        self._thread: threading.Thread | None = None

    @property
    def selected(self) -> PageRecord | None:
        return self._selected

    @property
    def enabled(self) -> bool:
        return self._enabled.is_set()

    def enable(self) -> None:
        self._enabled.set()
        logger.info("rendering enabled")

    def disable(self) -> None:
        self._enabled.clear()
        with self._lock:
            if self._selected is not None:
                self._selected = None
                self.display.clear()
        logger.info("rendering disabled")

    def tick(self, now: datetime | None = None) -> PageRecord | None:
        if not self.enabled:
            return None
        now = now or self.clock()
        with self._lock:
            records = self.store.snapshot()
            expired = [r for r in records if r.is_expired(now)]
            if expired:
                self.store.remove(expired)
                for r in expired:
                    logger.info("record id=%d expired", r.record_id)
                if any(r is self._selected for r in expired):
                    self._clear()

            # the selection can only go stale here if the clock went backwards
            if self._selected is not None and not self._selected.is_active(now):
                self._clear()

            winner = self._selected
            for r in records:
                if not r.is_active(now):
                    continue
                if winner is None or r.timestamp > winner.timestamp:
                    winner = r

            if winner is not None and winner is not self._selected:
                if self._selected is not None:
                    self.display.clear()
                self._selected = winner
                self.display.show(winner)
                logger.info("record id=%d on air until %s", winner.record_id, winner.window_end.isoformat())
            return self._selected

    def _clear(self) -> None:
        if self._selected is not None:
            logger.info("record id=%d off air", self._selected.record_id)
        self._selected = None
        self.display.clear()

    def _run(self) -> None:
        while True:
            if self.enabled:
                self.tick()
            if not self._ticker.wait():
                break

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="pagecast-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._ticker.stop()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
