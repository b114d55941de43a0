from __future__ import annotations

import io
import time
from datetime import timedelta

from conftest import T0, make_record
from pagecast.display import TextDisplay
from pagecast.scheduler import OnAirScheduler
from pagecast.store import RecordStore


class RecordingDisplay:
    def __init__(self):
        self.events = []

    def show(self, record):
        self.events.append(("show", record.record_id))

    def clear(self):
        self.events.append(("clear", None))


def _at(seconds):
    return T0 + timedelta(seconds=seconds)


def test_nothing_on_air_before_window():
    store = RecordStore([make_record(1, _at(10), 30)])
    s = OnAirScheduler(store)
    assert s.tick(_at(5)) is None
    assert len(store) == 1


def test_first_active_record_selected():
    display = RecordingDisplay()
    a = make_record(1, _at(0), 30)
    s = OnAirScheduler(RecordStore([a]), display)
    assert s.tick(_at(0)) is a
    assert s.tick(_at(1)) is a
    assert display.events == [("show", 1)]


def test_newer_record_wins_regardless_of_store_order():
    a = make_record(1, _at(0), 60)
    b = make_record(2, _at(10), 60)
    for order in ([a, b], [b, a]):
        s = OnAirScheduler(RecordStore(order))
        assert s.tick(_at(20)) is b


def test_newer_record_preempts_once_active():
    display = RecordingDisplay()
    a = make_record(1, _at(0), 60)
    b = make_record(2, _at(10), 60)
    s = OnAirScheduler(RecordStore([a, b]), display)
    assert s.tick(_at(5)) is a
    assert s.tick(_at(10)) is b
    assert display.events == [("show", 1), ("clear", None), ("show", 2)]


def test_older_record_never_preempts():
    a = make_record(1, _at(0), 60)
    b = make_record(2, _at(10), 60)
    store = RecordStore([b])
    s = OnAirScheduler(store)
    assert s.tick(_at(15)) is b
    store.extend([a])
    assert s.tick(_at(16)) is b


def test_equal_timestamps_first_seen_wins():
    a = make_record(1, _at(0), 60)
    b = make_record(2, _at(0), 60)
    store = RecordStore([a])
    s = OnAirScheduler(store)
    assert s.tick(_at(1)) is a
    store.extend([b])
    assert s.tick(_at(2)) is a


def test_expired_records_removed_and_selection_cleared():
    display = RecordingDisplay()
    a = make_record(1, _at(0), 10)
    store = RecordStore([a, make_record(2, _at(-100), 5)])
    s = OnAirScheduler(store, display)
    assert s.tick(_at(10)) is a
    assert len(store) == 1
    assert s.tick(_at(11)) is None
    assert len(store) == 0
    assert display.events == [("show", 1), ("clear", None)]


def test_older_record_returns_after_newer_expires():
    a = make_record(1, _at(0), 100)
    b = make_record(2, _at(10), 10)
    store = RecordStore([a, b])
    s = OnAirScheduler(store)
    assert s.tick(_at(15)) is b
    assert s.tick(_at(21)) is a
    assert store.snapshot() == [a]


def test_selected_record_always_active():
    records = [make_record(i, _at(i * 7), 5 + i) for i in range(10)]
    store = RecordStore(records)
    s = OnAirScheduler(store)
    for t in range(0, 90):
        now = _at(t)
        selected = s.tick(now)
        if selected is not None:
            assert selected.is_active(now)
            active = [r for r in store.snapshot() if r.is_active(now)]
            assert selected.timestamp == max(r.timestamp for r in active)
        assert all(not r.is_expired(now) for r in store.snapshot())


def test_clock_going_backwards_drops_selection():
    display = RecordingDisplay()
    a = make_record(1, _at(0), 30)
    store = RecordStore([a])
    s = OnAirScheduler(store, display)
    assert s.tick(_at(10)) is a
    assert s.tick(_at(-5)) is None
    assert s.selected is None
    assert store.snapshot() == [a]
    assert display.events == [("show", 1), ("clear", None)]
    assert s.tick(_at(1)) is a


def test_disable_clears_and_pauses():
    display = RecordingDisplay()
    a = make_record(1, _at(0), 5)
    store = RecordStore([a])
    s = OnAirScheduler(store, display)
    s.tick(_at(1))
    s.disable()
    assert s.selected is None
    assert s.tick(_at(100)) is None
    assert len(store) == 1
    s.enable()
    assert s.tick(_at(100)) is None
    assert len(store) == 0
    assert display.events == [("show", 1), ("clear", None)]


def test_background_ticker():
    a = make_record(1, _at(0), 60)
    s = OnAirScheduler(RecordStore([a]), clock=lambda: _at(30), period_s=0.01)
    s.start()
    try:
        deadline = time.monotonic() + 2.0
        while s.selected is None and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        s.stop()
    assert s.selected is a


def test_text_display_renders_banner_and_grid():
    out = io.StringIO()
    TextDisplay(out).show(make_record(3, _at(0), 90, text="NEWS"))
    lines = out.getvalue().splitlines()
    assert lines[0] == "Available from 2024-03-01 12:00:00    ID: 3    Duration: 90"
    assert lines[1] == "            to 2024-03-01 12:01:30"
    assert lines[2] == "-" * 80
    assert lines[4] == "NEWS"
    assert len(lines) == 3 + 25
