from __future__ import annotations

import enum
import ipaddress
import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

from .codec import (
    ACCEPT_PAYLOAD_SIZE,
    KIND_SIZE,
    REJECT_PAYLOAD_SIZE,
    Announcement,
    MessageKind,
    ProtocolError,
    RecordAccepted,
    RecordRejected,
    RejectReason,
    decode_kind,
    encode_record,
)
from .constants import (
    ACK_ATTEMPTS,
    ACK_POLL_INTERVAL_S,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_PORT,
    DEFAULT_READ_TIMEOUT_MS,
)
from .net import TcpEndpoint
from .record import PageRecord
from .timing import AttemptBudget, Ticker

logger = logging.getLogger(__name__)

MAX_BATCH = 0xFFFF


class OutcomeStatus(enum.Enum):
    ACCEPTED = "accepted"
    REJECTED_DUPLICATE_ID = "rejected_duplicate_id"
    REJECTED_DUPLICATE_TIMESTAMP = "rejected_duplicate_timestamp"

    @property
    def rejected(self) -> bool:
        return self is not OutcomeStatus.ACCEPTED


_REJECT_STATUS = {
    RejectReason.DUPLICATE_ID: OutcomeStatus.REJECTED_DUPLICATE_ID,
    RejectReason.DUPLICATE_TIMESTAMP: OutcomeStatus.REJECTED_DUPLICATE_TIMESTAMP,
}


@dataclass(frozen=True, slots=True)
class Outcome:
    record: PageRecord
    status: OutcomeStatus


@dataclass(slots=True)
class TransferSummary:
    total: int
    outcomes: list[Outcome] = field(default_factory=list)
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def accepted(self) -> int:
        return sum(1 for o in self.outcomes if o.status is OutcomeStatus.ACCEPTED)

    @property
    def rejected(self) -> int:
        return sum(1 for o in self.outcomes if o.status.rejected)

    @property
    def unconfirmed(self) -> int:
        return self.total - len(self.outcomes)

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    def as_dict(self) -> dict[str, object]:
        return {
            "accepted": self.accepted,
            "rejected": self.rejected,
            "unconfirmed": self.unconfirmed,
            "total": self.total,
            "seconds": self.duration_s,
        }


def _read_response(endpoint: TcpEndpoint) -> RecordAccepted | RecordRejected | None:
    kind = decode_kind(endpoint.read_exact(KIND_SIZE))
    if kind is MessageKind.RECORD_TRANSFERRED:
        return RecordAccepted.from_payload(endpoint.read_exact(ACCEPT_PAYLOAD_SIZE))
    if kind is MessageKind.RECORD_REJECTED:
        return RecordRejected.from_payload(endpoint.read_exact(REJECT_PAYLOAD_SIZE))
    return None


def transfer(
    endpoint: TcpEndpoint,
    records: Sequence[PageRecord],
    *,
    attempts: int = ACK_ATTEMPTS,
    poll_interval_s: float = ACK_POLL_INTERVAL_S,
) -> TransferSummary:
    """Announce, send and collect acknowledgments for ``records``.

    Write failures raise ``OSError``. Records that are still unacknowledged
    once ``attempts`` consecutive polls came back empty are reported as
    unconfirmed.
    """
    if len(records) > MAX_BATCH:
        raise ValueError(f"at most {MAX_BATCH} records fit in one batch, got {len(records)}")
    summary = TransferSummary(total=len(records))
    logger.info("transfer start; records=%d", len(records))

    endpoint.send_all(Announcement(len(records)).to_bytes())
    for record in records:
        chunks = list(encode_record(record))
        endpoint.send_all(b"".join(chunks))
        logger.debug("sent record id=%d cells=%d", record.record_id, len(chunks) - 1)

    pending = list(records)
    budget = AttemptBudget(attempts)
    ticker = Ticker(poll_interval_s)

    while pending and not budget.exhausted:
        if not endpoint.data_available():
            if budget.spend():
                ticker.wait()
            logger.debug("no acknowledgment pending; attempts left=%d", budget.remaining)
            continue

        try:
            response = _read_response(endpoint)
        except ProtocolError as e:
            response = None
            logger.warning("malformed acknowledgment: %s", e)
        record = None
        if response is not None:
            record = next((r for r in pending if r.record_id == response.record_id), None)
            if record is None:
                logger.warning("acknowledgment for unexpected record id=%d", response.record_id)
        if record is None:
            # void round
            if budget.spend():
                ticker.wait()
            continue

        pending.remove(record)
        if isinstance(response, RecordRejected):
            status = _REJECT_STATUS[response.reason]
        else:
            status = OutcomeStatus.ACCEPTED
        summary.outcomes.append(Outcome(record, status))
        budget.reset()
        logger.info("record id=%d %s", record.record_id, status.value)

    summary.end_ts = time.monotonic()
    logger.info(
        "transfer finished; accepted=%d rejected=%d unconfirmed=%d",
        summary.accepted,
        summary.rejected,
        summary.unconfirmed,
    )
    return summary


def is_valid_address(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def is_valid_port(text: str) -> bool:
    try:
        port = int(text)
    except ValueError:
        return False
    return 0 <= port <= 65535


class RecordSender:
    """Connects to a receiver and pushes batches of records to it."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
        read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS,
        attempts: int = ACK_ATTEMPTS,
        poll_interval_s: float = ACK_POLL_INTERVAL_S,
    ):
        self.host = host
        self.port = port
        self.connect_timeout_ms = connect_timeout_ms
        self.read_timeout_ms = read_timeout_ms
        self.attempts = attempts
        self.poll_interval_s = poll_interval_s
        self.endpoint: TcpEndpoint | None = None

    def connect(self) -> bool:
        try:
            self.endpoint = TcpEndpoint.connecting(
                self.host,
                self.port,
                timeout_ms=self.connect_timeout_ms,
                read_timeout_ms=self.read_timeout_ms,
            )
        except OSError as e:
            logger.warning("cannot connect to %s:%d: %s", self.host, self.port, e)
            return False
        logger.info("connected to %s:%d", self.host, self.port)
        return True

    def send_records(self, records: Sequence[PageRecord]) -> TransferSummary:
        if self.endpoint is None:
            raise RuntimeError("not connected")
        return transfer(
            self.endpoint,
            records,
            attempts=self.attempts,
            poll_interval_s=self.poll_interval_s,
        )

    def close(self) -> None:
        if self.endpoint is not None:
            self.endpoint.close()
            self.endpoint = None

    def __enter__(self) -> "RecordSender":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
