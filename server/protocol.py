"""
Wire protocol shared by the chat server and client.

Holds the line constants, the nickname predicate, address parsing and the
LineFramer that turns a raw byte stream into newline-terminated records.
"""

import argparse
import re
from typing import List, Tuple

GREETING = b"HELLO 1.0\n"
GREETING_MARKER = b"HELLO 1"

NICK_PREFIX = b"NICK "
MSG_PREFIX = b"MSG "

REPLY_OK = b"OK\n"
ERR_INVALID_NICK = b"ERROR: Invalid nickname format\n"
ERR_NICK_EXPECTED = b"ERROR: NICK command expected\n"
ERR_MSG_TOO_LONG = b"ERROR: Message too long\n"
ERR_UNSUPPORTED = b"ERROR: Unsupported command\n"

MAX_NICK_LEN = 12
MAX_MESSAGE_LEN = 255
RECV_SIZE = 1024

_NICK_RE = re.compile(r"[A-Za-z0-9_]{1,%d}" % MAX_NICK_LEN)


def is_valid_nickname(name):
    """Return True if name is 1-12 ASCII letters, digits or underscores."""
    if isinstance(name, (bytes, bytearray)):
        try:
            name = name.decode("ascii")
        except UnicodeDecodeError:
            return False
    return _NICK_RE.fullmatch(name) is not None


def chomp(line: bytes) -> bytes:
    """Strip every trailing newline and carriage return."""
    return line.rstrip(b"\r\n")


def encode_line(text: str) -> bytes:
    return text.rstrip("\r\n").encode("utf-8") + b"\n"


def parse_address(text: str) -> Tuple[str, int]:
    """
    Split "host:port" on the last colon.

    Brackets around an IPv6 literal are dropped, so both "[::1]:9999" and
    "::1:9999" resolve to ("::1", 9999).

    Raises:
        ValueError: missing host or port, or port not in 0-65535
    """
    host, sep, port = text.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in {text!r}, expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host or not port:
        raise ValueError(f"invalid host or port in {text!r}")
    if not port.isdigit() or int(port) > 65535:
        raise ValueError(f"invalid port {port!r}")
    return host, int(port)


def address_arg(text: str) -> Tuple[str, int]:
    """argparse type for host:port arguments."""
    try:
        return parse_address(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


class LineFramer:
    """
    Accumulates bytes for one stream and yields complete lines.

    Partial data is kept between calls to feed(), so the same framer is
    reused on every readiness event for its stream.
    """

    def __init__(self):
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet resolved into a line."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[bytes]:
        """Append data and return every complete line, chomped, in order."""
        self._buffer.extend(data)
        lines = []
        start = 0
        while True:
            pos = self._buffer.find(b"\n", start)
            if pos < 0:
                break
            lines.append(chomp(bytes(self._buffer[start:pos])))
            start = pos + 1
        if start:
            del self._buffer[:start]
        return lines

    def flush(self) -> bytes:
        """Return and forget the unterminated tail, chomped."""
        tail = chomp(bytes(self._buffer))
        self._buffer.clear()
        return tail

    def clear(self):
        self._buffer.clear()
