"""
Chat client package.

Main exports:
- Client: Handshake and console relay session
"""

from .client import Client, ClientError, HandshakeError

__all__ = ['Client', 'ClientError', 'HandshakeError']
