"""Connection factories built on the proxy socket.

This module provides two ways to hand proxied connections to other code:
- create_connector(), a factory returning proxy sockets on demand, usable
  wherever a client library accepts a "create connection" hook
- open_connection(), a coroutine returning an established proxy socket

Example:
    create_connection = create_connector("127.0.0.1", 1080)
    sock = create_connection({"host": "example.com", "port": 80})

    sock = await open_connection("example.com", 80, socks_port=9050)
    sock.write(b"GET / HTTP/1.0\\r\\n\\r\\n")
"""

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

from loguru import logger

from .proxy_socket import ProxySocket

ConnectionFactory = Callable[..., ProxySocket]


def create_connector(socks_host: str | None = None, socks_port: int | str | None = None) -> ConnectionFactory:
    """Create a connection factory bound to one SOCKS proxy.

    Args:
        socks_host: Proxy host, defaults to 127.0.0.1
        socks_port: Proxy port, defaults to 1080

    Returns:
        ConnectionFactory: ``create_connection(options, callback=None)``
        taking a mapping with ``host`` and ``port`` and returning a
        connecting ProxySocket
    """

    def create_connection(options: Mapping[str, Any], callback: Callable[[], Any] | None = None) -> ProxySocket:
        sock = ProxySocket.create(socks_host, socks_port)
        sock.connect(options.get("port"), options.get("host"), callback)
        return sock

    return create_connection


async def open_connection(
    host: str,
    port: int,
    socks_host: str | None = None,
    socks_port: int | str | None = None,
    encoding: str | None = None,
) -> ProxySocket:
    """Open a tunnel and wait until the proxy has accepted it.

    Args:
        host: Target host
        port: Target port
        socks_host: Proxy host, defaults to 127.0.0.1
        socks_port: Proxy port, defaults to 1080
        encoding: Optional encoding for received data

    Returns:
        ProxySocket: Socket in the established state

    Raises:
        ProxyError: If the handshake fails or the proxy refuses the request
        OSError: If the proxy can not be reached
    """
    loop = asyncio.get_running_loop()
    ready: asyncio.Future[None] = loop.create_future()

    def on_connect() -> None:
        if not ready.done():
            ready.set_result(None)

    def on_error(exc: Exception) -> None:
        if not ready.done():
            ready.set_exception(exc)

    def on_close(had_error: bool = False) -> None:
        if not ready.done():
            ready.set_exception(ConnectionAbortedError("SOCKS proxy closed the connection during the handshake"))

    sock = ProxySocket.create(socks_host, socks_port)
    if encoding:
        sock.set_encoding(encoding)
    sock.on("error", on_error)
    sock.on("close", on_close)
    sock.connect(port, host, on_connect)

    try:
        await ready
    except BaseException:
        sock.destroy()
        raise
    finally:
        sock.off("error", on_error)
        sock.off("close", on_close)

    logger.debug(f"Tunnel ready, local address {sock.local_address}:{sock.local_port}")
    return sock
