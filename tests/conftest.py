"""
pytest configuration and fixtures.
"""

import sys
import threading
import time
from pathlib import Path
from typing import Generator

import pytest

# Make the server and client packages importable without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from server.server import Server


def pytest_configure(config):
    config.addinivalue_line("markers", "fast: quick unit tests without sockets")
    config.addinivalue_line("markers", "slow: tests that run a real server")


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.02) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RunningServer:
    """Test server helper that runs the readiness loop in a background thread."""

    def __init__(self, server: Server):
        self.server = server
        self.host = None
        self.port = None
        self._thread: threading.Thread = None

    def start(self):
        self.server.bind()
        self.host, self.port = self.server.address
        self._thread = threading.Thread(
            target=self.server.serve_forever,
            kwargs={"poll_interval": 0.05},
            daemon=True,
        )
        self._thread.start()

    def stop(self):
        self.server.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    def nicknames(self):
        return sorted(c.nickname for c in self.server.connections.values())


@pytest.fixture
def running_server() -> Generator[RunningServer, None, None]:
    """A server bound to a free port on 127.0.0.1."""
    srv = RunningServer(Server("127.0.0.1", 0))
    srv.start()
    yield srv
    srv.stop()
