"""pagecast: timed teletext-style pages over TCP.

The package is split the same way the protocol is:
- the page model and its text form (record)
- fixed-layout wire messages (codec)
- the sending and receiving state machines (sender, receiver)
- the on-air selection loop over the shared record store (scheduler, store)
"""

from .codec import MessageKind, ProtocolError, RejectReason, StreamEndedEarly
from .receiver import RecordReceiver
from .record import Cell, Color, PageRecord, export_record, parse_record
from .scheduler import OnAirScheduler
from .sender import Outcome, OutcomeStatus, RecordSender, TransferSummary, transfer
from .store import RecordStore

__all__ = [
    "Cell",
    "Color",
    "MessageKind",
    "OnAirScheduler",
    "Outcome",
    "OutcomeStatus",
    "PageRecord",
    "ProtocolError",
    "RecordReceiver",
    "RecordSender",
    "RecordStore",
    "RejectReason",
    "StreamEndedEarly",
    "TransferSummary",
    "export_record",
    "parse_record",
    "transfer",
]
