"""
Main chat server implementation.

Runs a single-threaded readiness loop over the listening socket and every
client socket, drives line framing and command handling per client, and
fans chat lines out to the other connections.
"""

import argparse
import itertools
import logging
import selectors
import signal
import socket
import sys
import threading
from typing import Dict, Mapping, Optional, Set

from .client_connection import SEND_TIMEOUT, ClientConnection
from .commands import process_line
from .protocol import GREETING, address_arg

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 16


class Server:
    """
    Line based chat relay server.

    Features:
    - Many clients multiplexed on one thread
    - NICK registration before chatting
    - Broadcast of MSG lines to every other client
    """

    def __init__(self, host: str, port: int):
        """
        Initialize server.

        Args:
            host: Address to bind, resolved with getaddrinfo
            port: Port to listen on, 0 picks a free one
        """
        self.host = host
        self.port = port
        self.listener: Optional[socket.socket] = None
        self.selector: Optional[selectors.BaseSelector] = None
        self.client_list: Dict[int, ClientConnection] = {}  # conn_id: ClientConnection
        self._ids = itertools.count(1)
        self._to_remove: Set[int] = set()
        self._stop_event = threading.Event()

    @property
    def connections(self) -> Mapping[int, ClientConnection]:
        return dict(self.client_list)

    @property
    def address(self):
        """The (host, port) the listening socket is bound to."""
        return self.listener.getsockname()[:2]

    def bind(self):
        """
        Create the listening socket.

        Every address getaddrinfo returns is tried in order until one binds.

        Raises:
            OSError: resolution failed or no address could be bound
        """
        last_error: Optional[OSError] = None
        infos = socket.getaddrinfo(
            self.host, self.port, socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
        )
        for family, socktype, proto, _, sockaddr in infos:
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as e:
                last_error = e
                continue
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(sockaddr)
                sock.listen(LISTEN_BACKLOG)
            except OSError as e:
                sock.close()
                last_error = e
                continue
            sock.setblocking(False)
            self.listener = sock
            break
        if self.listener is None:
            raise OSError(f"could not bind {self.host}:{self.port}: {last_error}")
        logger.info(f"[x] Listening on {self.host}:{self.address[1]}")
        return self.listener

    def stop(self):
        """Ask the loop to finish. Safe from signal handlers and other threads."""
        self._stop_event.set()

    @property
    def running(self) -> bool:
        return self.listener is not None and not self._stop_event.is_set()

    def serve_forever(self, poll_interval: float = 0.5):
        """
        Run the readiness loop until stop() is called.

        poll_interval bounds how long a stop request can go unnoticed.

        Raises:
            OSError: the readiness wait itself failed
        """
        if self.listener is None:
            self.bind()
        self.selector = selectors.DefaultSelector()
        self.selector.register(self.listener, selectors.EVENT_READ, data=None)
        try:
            while not self._stop_event.is_set():
                # select() retries on EINTR by itself
                try:
                    events = self.selector.select(timeout=poll_interval)
                except OSError:
                    logger.exception("Readiness wait failed")
                    raise
                self._process_events(events)
        finally:
            self.shutdown()

    def _process_events(self, events):
        """One readiness pass: accept, read every ready client, then prune."""
        ready = []
        for key, _ in events:
            if key.data is None:
                self.accept()
            else:
                ready.append(key.data)
        for conn_id in ready:
            client = self.client_list.get(conn_id)
            if client is None or conn_id in self._to_remove:
                continue
            self.handle_readable(client)
        self.remove_marked()

    def accept(self) -> Optional[ClientConnection]:
        """Accept one pending peer and greet it."""
        try:
            sock, addr = self.listener.accept()
        except OSError as e:
            logger.error(f"ERROR: accept failed: {e}")
            return None
        sock.settimeout(SEND_TIMEOUT)
        client = ClientConnection(sock, addr, next(self._ids))
        self.client_list[client.conn_id] = client
        if self.selector is not None:
            self.selector.register(sock, selectors.EVENT_READ, data=client.conn_id)
        logger.info(f"Client Connected: {client.format_addr()}")
        if not client.send(GREETING):
            self.mark_for_removal(client)
        return client

    def handle_readable(self, client: ClientConnection):
        """Read once from client and act on every complete line received."""
        try:
            data = client.recv()
        except OSError as e:
            logger.error(f"Error reading from client {client.nickname}. Closing connection. ({e})")
            self.mark_for_removal(client)
            return
        if not data:
            logger.info(f"Client {client.nickname} has disconnected.")
            self.mark_for_removal(client)
            return
        for line in client.feed(data):
            logger.debug(f"Received from {client.format_addr()}: {line!r}")
            outcome = process_line(client, line)
            if outcome.reply is not None and not client.send(outcome.reply):
                self.mark_for_removal(client)
                break
            if outcome.broadcast is not None:
                self.broadcast(client, outcome.broadcast)

    def broadcast(self, sender: ClientConnection, data: bytes):
        """
        Deliver data to every live connection except sender.

        A failed write drops only that recipient; delivery to the rest goes on.
        """
        logger.debug(f"broadcast() from {sender.nickname}: {data!r}")
        for conn_id, client in self.client_list.items():
            if conn_id == sender.conn_id or conn_id in self._to_remove:
                continue
            if not client.send(data):
                self.mark_for_removal(client)

    def mark_for_removal(self, client: ClientConnection):
        self._to_remove.add(client.conn_id)

    def remove_marked(self):
        """Unregister and close every connection marked during the last pass."""
        for conn_id in self._to_remove:
            client = self.client_list.pop(conn_id, None)
            if client is not None:
                self._drop(client)
        self._to_remove.clear()

    def _drop(self, client: ClientConnection):
        if self.selector is not None:
            try:
                self.selector.unregister(client.sock)
            except (KeyError, ValueError):
                pass
        client.close()
        logger.debug(f"Removed {client!r}")

    def shutdown(self):
        """Close the listener and every remaining connection."""
        if self.listener is not None:
            if self.selector is not None:
                try:
                    self.selector.unregister(self.listener)
                except (KeyError, ValueError):
                    pass
            self.listener.close()
            self.listener = None
        for client in list(self.client_list.values()):
            self._drop(client)
        self.client_list.clear()
        self._to_remove.clear()
        if self.selector is not None:
            self.selector.close()
            self.selector = None
        logger.info("Server shutting down")


def main(argv=None):
    """Entry point for server"""
    parser = argparse.ArgumentParser(description="Chat Server")
    parser.add_argument('address', metavar='bindaddr:port', type=address_arg,
                        help='Address and port to listen on')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args(argv)

    # setup logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    host, port = args.address
    server = Server(host, port)
    try:
        server.bind()
    except OSError as e:
        logger.error(f"Failed to bind: {e}")
        return 1

    # handlers only request the stop, the loop does the cleanup
    def request_stop(signum, frame):
        server.stop()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    try:
        server.serve_forever()
    except OSError:
        return 1
    logger.info("Server stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
