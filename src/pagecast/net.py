from __future__ import annotations

import select
import socket
from typing import Tuple

from .constants import DEFAULT_CONNECT_TIMEOUT_MS, DEFAULT_READ_TIMEOUT_MS


class TcpEndpoint:
    """One TCP socket, owned and driven by a single thread."""

    def __init__(self, sock: socket.socket, read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS):
        self.sock = sock
        if read_timeout_ms > 0:
            self.sock.settimeout(read_timeout_ms / 1000.0)

    @classmethod
    def connecting(
        cls,
        host: str,
        port: int,
        timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
        read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS,
    ) -> "TcpEndpoint":
        sock = socket.create_connection((host, port), timeout=timeout_ms / 1000.0)
        return cls(sock, read_timeout_ms)

    @classmethod
    def listening(cls, host: str, port: int, accept_timeout_ms: int = 500) -> "TcpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen()
        return cls(sock, accept_timeout_ms)

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def accept(self, read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS) -> Tuple["TcpEndpoint", Tuple[str, int]]:
        conn, addr = self.sock.accept()
        return TcpEndpoint(conn, read_timeout_ms), addr

    def data_available(self, wait_s: float = 0.0) -> bool:
        """Return True when a read would not block (data pending or peer closed)."""
        readable, _, _ = select.select([self.sock], [], [], wait_s)
        return bool(readable)

    def read_exact(self, size: int) -> bytes:
        """Read exactly ``size`` bytes, or fewer if the peer closes or the read times out."""
        buf = bytearray()
        while len(buf) < size:
            try:
                chunk = self.sock.recv(size - len(buf))
            except TimeoutError:
                break
            if not chunk:
                break
            buf.extend(chunk)
        return bytes(buf)

    def send_all(self, data: bytes) -> None:
        self.sock.sendall(data)

    def close(self) -> None:
        self.sock.close()
