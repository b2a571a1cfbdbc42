"""
Main client implementation
Handles connection to the server, the HELLO/NICK handshake, and relaying
console lines to the server and server lines to the console
"""

import argparse
import logging
import os
import selectors
import socket
import sys
import time
from typing import List, Optional, TextIO

from server.protocol import (
    GREETING_MARKER, MAX_MESSAGE_LEN, MSG_PREFIX, NICK_PREFIX, LineFramer,
    address_arg, encode_line, is_valid_nickname,
)

logger = logging.getLogger(__name__)

RECV_SIZE = 2048
GREETING_TIMEOUT = 5.0
GREETING_POLL_INTERVAL = 3.0


class ClientError(Exception):
    """Unrecoverable connection or protocol failure."""


class HandshakeError(ClientError):
    """The server never greeted us."""


class Client():
    """
    Blocking chat client driven by a readiness loop

    Features:
    - Greeting wait bounded by a timeout
    - Message validation before sending messages
    - Server lines and console lines multiplexed on one thread
    """
    def __init__(self, host: str, port: int, nickname: str,
                 stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None,
                 greeting_timeout: float = GREETING_TIMEOUT,
                 poll_interval: float = GREETING_POLL_INTERVAL) -> None:
        """
        Initialize client
        Args:
            host: host of the server to connect to
            port: port of the server to connect to
            nickname: name to register with, already validated
            stdin: console to read chat lines from, must have a fileno()
            stdout: console to print server lines to
        """
        self.host = host
        self.port = port
        self.nickname = nickname
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.greeting_timeout = greeting_timeout
        self.poll_interval = poll_interval
        self.sock: Optional[socket.socket] = None
        self.framer = LineFramer()
        self.console_framer = LineFramer()
        self._skip_greeting = False
        self._backlog: List[bytes] = []

    def connect_to_server(self) -> socket.socket:
        """Handle the connection to the chat server"""
        try:
            self.sock = socket.create_connection((self.host, self.port))
        except OSError as e:
            logger.error(f"ERROR: Connection to {self.host}:{self.port} failed: {e}")
            raise ClientError("Failed to connect to server.") from e
        print(f"Connected to server at {self.host}:{self.port}", file=self.stdout, flush=True)
        return self.sock

    def await_greeting(self):
        """
        Wait for the server's HELLO line.

        Raises:
            HandshakeError: EOF, read error, or nothing within greeting_timeout
        """
        buffer = bytearray()
        deadline = time.monotonic() + self.greeting_timeout
        with selectors.DefaultSelector() as sel:
            sel.register(self.sock, selectors.EVENT_READ)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.debug("Greeting wait timed out")
                    break
                if not sel.select(timeout=min(self.poll_interval, remaining)):
                    continue
                try:
                    data = self.sock.recv(RECV_SIZE)
                except OSError as e:
                    logger.error(f"ERROR: reading greeting: {e}")
                    break
                if not data:
                    break
                buffer.extend(data)
                start = buffer.find(GREETING_MARKER)
                if start >= 0:
                    # the greeting line itself is dropped once framed
                    self._skip_greeting = True
                    self._backlog = self.framer.feed(bytes(buffer[start:]))
                    return
        raise HandshakeError("No HELLO received from server.")

    def send_nickname(self):
        # the OK/ERROR reply is not awaited, it shows up in the chat loop
        self._send(NICK_PREFIX + encode_line(self.nickname))
        print("Nickname sent successfully. Handshake complete.", file=self.stdout, flush=True)

    def _send(self, data: bytes):
        try:
            self.sock.sendall(data)
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError, OSError) as e:
            logger.error(f"Connection ERROR: {e}")
            raise ClientError("Failed to send message.") from e

    def send_message(self, message: str):
        """handle the sending of chat messages to server"""
        self._send(MSG_PREFIX + encode_line(message))

    def message_validation(self, msg: str) -> bool:
        """handle the validation of the message sent to the server"""
        if len(msg.encode("utf-8")) > MAX_MESSAGE_LEN:
            print(f"ERROR: Message too long. Max {MAX_MESSAGE_LEN} characters.", file=sys.stderr)
            return False
        return True

    def display_lines(self, lines: List[bytes]):
        for line in lines:
            if self._skip_greeting:
                self._skip_greeting = False
                continue
            if line.startswith(MSG_PREFIX):
                line = line[len(MSG_PREFIX):]
            print(line.decode("utf-8", errors="replace"), file=self.stdout, flush=True)

    def receive_message(self) -> bool:
        """
        Handle one readable event on the server socket.

        Returns False once the server closed the connection.
        """
        try:
            data = self.sock.recv(RECV_SIZE)
        except OSError as e:
            logger.error(f"Connection ERROR: {e}")
            raise ClientError("Failed to receive data from server.") from e
        if not data:
            print("Connection closed by server.", file=self.stdout, flush=True)
            return False
        self.display_lines(self.framer.feed(data))
        return True

    def send_user_input(self) -> bool:
        """
        Handle one readable event on the console.

        Returns False on console EOF.
        """
        # raw read, a buffered readline() would hide further pasted lines
        data = os.read(self.stdin.fileno(), RECV_SIZE)
        if not data:
            logger.debug("Console EOF")
            tail = self.console_framer.flush()
            if tail:
                self.relay_console_lines([tail])
            return False
        self.relay_console_lines(self.console_framer.feed(data))
        return True

    def relay_console_lines(self, lines: List[bytes]):
        for line in lines:
            message = line.decode("utf-8", errors="replace")
            if self.message_validation(message):
                self.send_message(message)

    def receive_server_messages(self):
        """Relay between server and console until either side ends."""
        self.display_lines(self._backlog)
        self._backlog = []
        with selectors.DefaultSelector() as sel:
            sel.register(self.sock, selectors.EVENT_READ, data=self.receive_message)
            sel.register(self.stdin, selectors.EVENT_READ, data=self.send_user_input)
            while True:
                for key, _ in sel.select():
                    if not key.data():
                        return

    def close(self):
        if self.sock is not None:
            self.sock.close()
            self.sock = None
            logger.info("Disconnected from server")

    def run(self) -> int:
        """Main client loop"""
        self.connect_to_server()
        try:
            self.await_greeting()
            self.send_nickname()
            self.receive_server_messages()
        finally:
            self.close()
        return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Chat Client")
    parser.add_argument('address', metavar='host:port', type=address_arg, help='Server address')
    parser.add_argument('nickname', help='Nickname, 1-12 letters, digits or underscores')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args(argv)
    if not is_valid_nickname(args.nickname):
        parser.error("nickname must be 1-12 characters from [A-Za-z0-9_]")

    # setup logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    host, port = args.address
    client = Client(host, port, args.nickname)
    try:
        return client.run()
    except ClientError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        print("\nClient Stopped")
        return 0


if __name__ == "__main__":
    sys.exit(main())
