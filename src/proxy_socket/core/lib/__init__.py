"""Core proxy socket library components."""

from .connector import create_connector, open_connection
from .events import EventEmitter, pipe_stream
from .proxy_socket import ConnectionState, ProxySocket
from .transport import StreamTransport, Transport

__all__ = [
    "ConnectionState",
    "create_connector",
    "EventEmitter",
    "open_connection",
    "pipe_stream",
    "ProxySocket",
    "StreamTransport",
    "Transport",
]
