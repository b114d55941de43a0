from __future__ import annotations

import logging
import queue
import threading
from typing import Tuple

from .codec import (
    CELL_SIZE,
    COUNT_SIZE,
    HEADER_SIZE,
    KIND_SIZE,
    CellDelta,
    MessageKind,
    PageHeader,
    ProtocolError,
    RecordAccepted,
    RecordRejected,
    RejectReason,
    decode_count,
    decode_kind,
)
from .constants import DEFAULT_PORT, DEFAULT_READ_TIMEOUT_MS
from .net import TcpEndpoint
from .record import PageRecord
from .store import RecordStore

logger = logging.getLogger(__name__)


def receive_record(endpoint: TcpEndpoint) -> PageRecord:
    header = PageHeader.from_bytes(endpoint.read_exact(HEADER_SIZE))
    record = header.new_record()
    for _ in range(header.cell_count):
        CellDelta.from_bytes(endpoint.read_exact(CELL_SIZE)).apply_to(record)
    return record


def check_acceptance(
    record: PageRecord,
    batch: list[PageRecord],
    store: RecordStore,
) -> RejectReason | None:
    """Decide whether ``record`` may join ``batch``.

    IDs are checked against the batch and the store. Timestamps are only
    checked against the batch, so a record may share a timestamp with one
    that is already stored. An accepted record's ID is reserved in the store
    right away, before the batch is added to it.
    """
    if record in batch or store.contains_id(record.record_id):
        return RejectReason.DUPLICATE_ID
    if record.has_timestamp_in(batch):
        return RejectReason.DUPLICATE_TIMESTAMP
    if not store.reserve_id(record.record_id):
        # another connection claimed it since the check above
        return RejectReason.DUPLICATE_ID
    return None


def receive_batch(
    endpoint: TcpEndpoint,
    count: int,
    store: RecordStore,
    batches: queue.Queue[list[PageRecord]] | None = None,
) -> list[PageRecord]:
    """Receive ``count`` records, acknowledging each before reading the next.

    Accepted records are added to ``store`` (and published on ``batches``)
    once the batch ends, even if it ends with an error.
    """
    accepted: list[PageRecord] = []
    try:
        for _ in range(count):
            record = receive_record(endpoint)
            reason = check_acceptance(record, accepted, store)
            if reason is None:
                accepted.append(record)
                reply: RecordAccepted | RecordRejected = RecordAccepted(record.record_id)
                logger.info("accepted record id=%d", record.record_id)
            else:
                reply = RecordRejected(record.record_id, reason)
                logger.info("rejected record id=%d reason=%s", record.record_id, reason.name)
            endpoint.send_all(reply.to_bytes())
    finally:
        if accepted:
            store.extend(accepted)
        if batches is not None:
            batches.put(accepted)
    return accepted


class RecordReceiver:
    """Accepts sender connections and feeds received records into a store."""

    def __init__(
        self,
        store: RecordStore,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        *,
        poll_interval_s: float = 1.0,
        read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS,
        batches: queue.Queue[list[PageRecord]] | None = None,
    ):
        self.store = store
        self.host = host
        self.port = port
        self.poll_interval_s = poll_interval_s
        self.read_timeout_ms = read_timeout_ms
        self.batches = batches
        self.listener: TcpEndpoint | None = None
        self._running = threading.Event()
        self._accept_thread: threading.Thread | None = None
        self._handlers: list[threading.Thread] = []

    @property
    def address(self) -> Tuple[str, int]:
        if self.listener is None:
            raise RuntimeError("receiver not started")
        return self.listener.address

    def start(self) -> None:
        self.listener = TcpEndpoint.listening(self.host, self.port)
        self._running.set()
        self._accept_thread = threading.Thread(target=self._serve, name="pagecast-accept", daemon=True)
        self._accept_thread.start()
        logger.info("receiver listening on %s:%d", *self.address)

    def stop(self) -> None:
        self._running.clear()
        if self._accept_thread is not None:
            self._accept_thread.join()
            self._accept_thread = None
        for t in self._handlers:
            t.join()
        self._handlers.clear()
        if self.listener is not None:
            self.listener.close()
            self.listener = None
        logger.info("receiver stopped")

    def __enter__(self) -> "RecordReceiver":
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def _serve(self) -> None:
        assert self.listener is not None
        while self._running.is_set():
            try:
                endpoint, addr = self.listener.accept(self.read_timeout_ms)
            except TimeoutError:
                continue
            logger.info("connection from %s:%d", addr[0], addr[1])
            t = threading.Thread(
                target=self.handle_connection,
                args=(endpoint, addr),
                name=f"pagecast-conn-{addr[0]}:{addr[1]}",
                daemon=True,
            )
            self._handlers = [h for h in self._handlers if h.is_alive()]
            self._handlers.append(t)
            t.start()

    def handle_connection(self, endpoint: TcpEndpoint, addr: Tuple[str, int]) -> None:
        try:
            while self._running.is_set():
                if not endpoint.data_available(self.poll_interval_s):
                    continue
                raw = endpoint.read_exact(KIND_SIZE)
                if not raw:
                    logger.info("connection from %s:%d closed", addr[0], addr[1])
                    break
                kind = decode_kind(raw)
                if kind is not MessageKind.TRANSFER_RECORDS:
                    logger.warning("ignoring unexpected message tag %d from %s:%d", raw[0], addr[0], addr[1])
                    continue
                count = decode_count(endpoint.read_exact(COUNT_SIZE))
                logger.info("batch of %d records announced by %s:%d", count, addr[0], addr[1])
                accepted = receive_batch(endpoint, count, self.store, self.batches)
                logger.info("batch done; accepted=%d of %d", len(accepted), count)
        except ProtocolError as e:
            logger.warning("dropping connection from %s:%d: %s", addr[0], addr[1], e)
        except OSError as e:
            logger.warning("connection from %s:%d failed: %s", addr[0], addr[1], e)
        finally:
            endpoint.close()
