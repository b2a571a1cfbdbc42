"""
Client connection management.

Handles one accepted peer: its socket, registration state and inbound
line buffer.
"""

import enum
import logging
import socket
from typing import List

from .protocol import RECV_SIZE, LineFramer

logger = logging.getLogger(__name__)

# seconds a single send may block before the recipient is dropped
SEND_TIMEOUT = 2.0


class ConnectionState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"


class ClientConnection:
    """
    Represents a single connected client.

    Manages:
    - Registration state and nickname
    - Partial line buffering across reads
    - Best-effort writes to the peer
    """

    def __init__(self, sock: socket.socket, addr, conn_id: int):
        """
        Initialize client connection.

        Args:
            sock: accepted socket for this client
            addr: Client address tuple (host, port, ...)
            conn_id: id of this connection, unique for the server's lifetime
        """
        self.sock = sock
        self.addr = addr
        self.conn_id = conn_id
        self.nickname = ""
        self.state = ConnectionState.UNREGISTERED
        self.framer = LineFramer()
        self.closed = False

    def format_addr(self) -> str:
        """Format address as IP:Port string."""
        return f"{self.addr[0]}:{self.addr[1]}"

    @property
    def registered(self) -> bool:
        return self.state is ConnectionState.REGISTERED

    def register(self, nickname: str):
        self.nickname = nickname
        self.state = ConnectionState.REGISTERED

    def recv(self) -> bytes:
        """Read once from the peer. b'' means the peer closed the stream."""
        return self.sock.recv(RECV_SIZE)

    def feed(self, data: bytes) -> List[bytes]:
        """Buffer data and return the complete lines it finished."""
        return self.framer.feed(data)

    def send(self, data: bytes) -> bool:
        """Write data to the peer, returning False if the write failed."""
        if self.closed:
            return False
        try:
            self.sock.sendall(data)
            return True
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError, OSError) as e:
            logger.error(f"Error@{self.format_addr()} sending to {self.nickname!r}: {e}")
            return False

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.framer.clear()
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Close error for {self.format_addr()}: {e}")

    def __repr__(self):
        return f"<ClientConnection #{self.conn_id} {self.format_addr()} {self.nickname!r} {self.state.value}>"
