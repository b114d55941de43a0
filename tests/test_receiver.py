from __future__ import annotations

import queue
import socket
from datetime import timedelta

import pytest

from conftest import T0, make_record
from pagecast.codec import Announcement, MessageKind, RejectReason, StreamEndedEarly, decode_kind, encode_record
from pagecast.receiver import RecordReceiver, check_acceptance, receive_batch, receive_record
from pagecast.record import Color
from pagecast.store import RecordStore


def _wire(*records):
    return b"".join(chunk for r in records for chunk in encode_record(r))


def _responses(peer, n):
    out = []
    for _ in range(n):
        kind = decode_kind(peer.recv(1, socket.MSG_WAITALL))
        if kind is MessageKind.RECORD_TRANSFERRED:
            out.append(("accepted", int.from_bytes(peer.recv(4, socket.MSG_WAITALL), "little", signed=True)))
        else:
            raw = peer.recv(5, socket.MSG_WAITALL)
            out.append((RejectReason(raw[4]).name, int.from_bytes(raw[:4], "little", signed=True)))
    return out


def test_receive_record_applies_cells(endpoints):
    local, peer = endpoints
    sent = make_record(4, T0, text="ok")
    sent.cell(10, 20).set_back_color(Color.RED)
    peer.sendall(_wire(sent))
    got = receive_record(local)
    assert got.record_id == 4
    assert [(c.x, c.y, c.sign) for c in got.non_empty_cells()] == [(0, 1, "o"), (1, 1, "k"), (10, 20, " ")]
    assert got.cell(10, 20).back is Color.RED


def test_duplicate_id_in_batch(endpoints):
    local, peer = endpoints
    store = RecordStore()
    peer.sendall(_wire(make_record(1, T0), make_record(1, T0 + timedelta(seconds=1))))
    accepted = receive_batch(local, 2, store)
    assert [r.record_id for r in accepted] == [1]
    assert _responses(peer, 2) == [("accepted", 1), ("DUPLICATE_ID", 1)]
    assert len(store) == 1


def test_duplicate_timestamp_in_batch(endpoints):
    local, peer = endpoints
    store = RecordStore()
    peer.sendall(_wire(make_record(1, T0), make_record(2, T0)))
    receive_batch(local, 2, store)
    assert _responses(peer, 2) == [("accepted", 1), ("DUPLICATE_TIMESTAMP", 2)]


def test_id_already_in_store_is_rejected(endpoints):
    local, peer = endpoints
    store = RecordStore([make_record(5, T0)])
    peer.sendall(_wire(make_record(5, T0 + timedelta(minutes=1))))
    assert receive_batch(local, 1, store) == []
    assert _responses(peer, 1) == [("DUPLICATE_ID", 5)]
    assert len(store) == 1


def test_stored_timestamp_does_not_block_new_batch(endpoints):
    # timestamps are only compared within one batch
    local, peer = endpoints
    store = RecordStore([make_record(5, T0)])
    peer.sendall(_wire(make_record(6, T0)))
    assert [r.record_id for r in receive_batch(local, 1, store)] == [6]
    assert _responses(peer, 1) == [("accepted", 6)]
    assert len(store) == 2


def test_id_check_precedes_timestamp_check():
    store = RecordStore()
    batch = [make_record(1, T0)]
    assert check_acceptance(make_record(1, T0), batch, store) is RejectReason.DUPLICATE_ID
    assert check_acceptance(make_record(2, T0), batch, store) is RejectReason.DUPLICATE_TIMESTAMP
    assert check_acceptance(make_record(2, T0 + timedelta(seconds=1)), batch, store) is None


def test_truncated_batch_keeps_accepted_records(endpoints):
    local, peer = endpoints
    store = RecordStore()
    batches: queue.Queue = queue.Queue()
    second = _wire(make_record(2, T0 + timedelta(seconds=1), text="abc"))
    peer.sendall(_wire(make_record(1, T0)) + second[: len(second) - 3])
    peer.shutdown(socket.SHUT_WR)
    with pytest.raises(StreamEndedEarly):
        receive_batch(local, 2, store, batches)
    assert [r.record_id for r in store.snapshot()] == [1]
    assert [r.record_id for r in batches.get_nowait()] == [1]


def test_receiver_serves_batches_over_tcp():
    store = RecordStore()
    batches: queue.Queue = queue.Queue()
    with RecordReceiver(store, "127.0.0.1", 0, poll_interval_s=0.05, batches=batches) as receiver:
        conn = socket.create_connection(receiver.address, timeout=2.0)
        try:
            conn.sendall(Announcement(2).to_bytes() + _wire(make_record(1, T0), make_record(2, T0)))
            assert _responses(conn, 2) == [("accepted", 1), ("DUPLICATE_TIMESTAMP", 2)]
            assert [r.record_id for r in batches.get(timeout=2.0)] == [1]

            # a second batch on the same connection sees the stored record
            conn.sendall(Announcement(1).to_bytes() + _wire(make_record(1, T0 + timedelta(hours=1))))
            assert _responses(conn, 1) == [("DUPLICATE_ID", 1)]
            assert batches.get(timeout=2.0) == []
        finally:
            conn.close()
    assert [r.record_id for r in store.snapshot()] == [1]


def test_unknown_tag_is_ignored():
    store = RecordStore()
    batches: queue.Queue = queue.Queue()
    with RecordReceiver(store, "127.0.0.1", 0, poll_interval_s=0.05, batches=batches) as receiver:
        conn = socket.create_connection(receiver.address, timeout=2.0)
        try:
            conn.sendall(b"\x07" + Announcement(1).to_bytes() + _wire(make_record(3, T0)))
            assert _responses(conn, 1) == [("accepted", 3)]
            batches.get(timeout=2.0)
        finally:
            conn.close()
    assert len(store) == 1



def test_id_accepted_mid_batch_is_taken_for_other_batches():
    store = RecordStore()
    assert check_acceptance(make_record(9, T0), [], store) is None
    assert len(store) == 0
    assert check_acceptance(make_record(9, T0 + timedelta(seconds=1)), [], store) is RejectReason.DUPLICATE_ID


def test_concurrent_connections_cannot_both_accept_an_id():
    store = RecordStore()
    batches: queue.Queue = queue.Queue()
    with RecordReceiver(store, "127.0.0.1", 0, poll_interval_s=0.05, batches=batches) as receiver:
        first = socket.create_connection(receiver.address, timeout=2.0)
        second = socket.create_connection(receiver.address, timeout=2.0)
        try:
            first.sendall(Announcement(2).to_bytes() + _wire(make_record(9, T0)))
            assert _responses(first, 1) == [("accepted", 9)]

            second.sendall(Announcement(1).to_bytes() + _wire(make_record(9, T0 + timedelta(seconds=1))))
            assert _responses(second, 1) == [("DUPLICATE_ID", 9)]
            assert batches.get(timeout=2.0) == []

            first.sendall(_wire(make_record(10, T0 + timedelta(seconds=2))))
            assert _responses(first, 1) == [("accepted", 10)]
            assert [r.record_id for r in batches.get(timeout=2.0)] == [9, 10]
        finally:
            first.close()
            second.close()
    assert sorted(r.record_id for r in store.snapshot()) == [9, 10]
