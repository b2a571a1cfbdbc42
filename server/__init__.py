"""
Chat server package.

Main exports:
- Server: Readiness loop and broadcast router
- ClientConnection: Individual client state
- LineFramer: Newline framing shared with the client
"""

from .client_connection import ClientConnection, ConnectionState
from .protocol import LineFramer, is_valid_nickname
from .server import Server

__version__ = "1.0.0"
__all__ = ['Server', 'ClientConnection', 'ConnectionState', 'LineFramer', 'is_valid_nickname']
