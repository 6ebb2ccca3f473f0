"""Main entry point for opening connections through a SOCKS5 proxy.

This module serves as the public interface to the proxy socket
implementation, exposing only the components callers need.

The module abstracts away the complexity of:
- SOCKS5 method negotiation and connect requests
- Queuing I/O until the tunnel is established
- Driving the underlying asyncio connection

Example:
    from proxy_socket.core.proxy import open_connection

    # Open a tunnel to example.com:80 through a proxy on localhost:1080
    sock = await open_connection("example.com", 80)

Attributes:
    __all__ (list): List of public components exposed by this module
"""

from .lib import ProxySocket, create_connector, open_connection

__all__ = ["create_connector", "open_connection", "ProxySocket"]
