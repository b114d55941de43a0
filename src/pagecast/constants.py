from __future__ import annotations

DEFAULT_PORT = 1234

COLUMNS = 80
ROWS = 25
DEFAULT_DURATION_S = 60

# all multi-byte fields are little-endian
ANNOUNCEMENT_FORMAT = "<BH"  # kind, record count
ACCEPT_FORMAT = "<Bi"  # kind, record id
REJECT_FORMAT = "<BiB"  # kind, record id, reason
HEADER_FORMAT = "<iHBBBBBiH"  # id, year, month, day, hour, minute, second, duration, cells
CELL_FORMAT = "<HHHBB"  # x, y, sign code unit, fore, back

COUNT_FORMAT = "<H"
ACCEPT_PAYLOAD_FORMAT = "<i"
REJECT_PAYLOAD_FORMAT = "<iB"

ACK_ATTEMPTS = 5
ACK_POLL_INTERVAL_S = 1.0
TICK_PERIOD_S = 1.0

DEFAULT_CONNECT_TIMEOUT_MS = 5000
DEFAULT_READ_TIMEOUT_MS = 5000
