"""Core SOCKS5 client implementation.

This package contains the core components of the proxy socket:
- SOCKS5 wire format (greeting, connect request, reply parsing)
- The negotiation state machine wrapping a stream transport
- The asyncio stream transport
- Proxy and target endpoint handling
- Exception handling

The core package provides all the functionality needed to tunnel a stream
through a SOCKS5 proxy, while keeping the implementation details separate
from the command-line interface.
"""
