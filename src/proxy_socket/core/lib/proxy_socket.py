"""SOCKS5 proxy socket implementation.

This module implements the client side of a SOCKS5 CONNECT handshake
(RFC 1928) on top of a stream transport, providing:
- Method negotiation (no-auth only)
- Connect requests for IPv4, IPv6 and domain name targets
- Validation of the proxy replies, tolerant to fragmented replies
- Queuing of writes, pipes, encoding changes and end() issued before the
  tunnel is up, replayed in order once it is
- Pass-through of every socket operation once the tunnel is established

The proxy socket behaves like the transport it wraps, so it can be handed to
any code expecting a plain stream socket.

Example:
    sock = ProxySocket("127.0.0.1", 1080)
    sock.on("data", lambda chunk: console.print(chunk))
    sock.connect(80, "example.com", lambda: console.print("[green]Tunnel ready"))
    sock.write(b"GET / HTTP/1.0\\r\\nHost: example.com\\r\\n\\r\\n")
"""

import codecs
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from loguru import logger

from proxy_socket.core.exceptions import (
    AlreadyConnectedError,
    AlreadyConnectingError,
    ProxyError,
    SocketClosedError,
    TransportWriteError,
)
from proxy_socket.core.network import ProxyEndpoint, TargetEndpoint, normalize_connect_args

from .events import EventEmitter, pipe_stream
from .protocol import build_connect_request, build_greeting, encode_address, parse_auth_reply, parse_connect_reply
from .transport import StreamTransport, Transport


class ConnectionState(Enum):
    """Life cycle of a proxy socket."""

    IDLE = "idle"
    CONNECTING = "connecting"
    NEGOTIATING = "negotiating"
    ESTABLISHED = "established"
    FAILED = "failed"
    CLOSED = "closed"


_HANDSHAKE_STATES = (ConnectionState.CONNECTING, ConnectionState.NEGOTIATING)


class ProxySocket(EventEmitter):
    """Stream socket tunnelled through a SOCKS5 proxy."""

    def __init__(
        self,
        socks_host: str | None = None,
        socks_port: int | str | None = None,
        socket: Transport | None = None,
    ) -> None:
        """Initialize the proxy socket.

        Args:
            socks_host: Proxy host, defaults to 127.0.0.1
            socks_port: Proxy port, defaults to 1080
            socket: Transport to use, a new StreamTransport when omitted
        """
        super().__init__()
        self.proxy = ProxyEndpoint.from_options(socks_host, socks_port)
        self.transport: Transport = socket if socket is not None else StreamTransport()
        self.target: TargetEndpoint | None = None
        self.state = ConnectionState.IDLE
        self.stage = 0
        self.readable = True
        self.writable = True

        self.local_address: str | None = None
        self.local_port: int | None = None
        self.remote_address: str | None = None
        self.remote_port: int | None = None
        self.buffer_size = 0

        self._stages: tuple[Callable[[bytes], int | None], ...] = (
            self._receive_socks_auth,
            self._receive_socks_connect,
        )
        self._handshake = bytearray()
        self._pending_writes: list[tuple[Any, str | None, Callable[[], Any] | None]] = []
        self._pending_pipes: list[tuple[Any, Mapping[str, Any] | None]] = []
        self._pending_end: tuple[Any, str | None] | None = None
        self._encoding: str | None = None

        self.transport.on("data", self._on_transport_data)
        self.transport.on("error", self._on_transport_error)
        self.transport.on("end", self._on_transport_end)
        self.transport.on("timeout", lambda: self.emit("timeout"))
        self.transport.on("close", self._on_transport_close)
        self.transport.on("drain", self._on_transport_drain)

    @classmethod
    def create(
        cls, socks_host: str | None = None, socks_port: int | str | None = None, socket: Transport | None = None
    ) -> "ProxySocket":
        return cls(socks_host, socks_port, socket)

    @property
    def socks_host(self) -> str:
        return self.proxy.host

    @property
    def socks_port(self) -> int:
        return self.proxy.port

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.ESTABLISHED

    @property
    def connecting(self) -> bool:
        return self.state in _HANDSHAKE_STATES

    def connect(self, port: Any, host: Any = None, callback: Callable[[], Any] | None = None) -> "ProxySocket":
        """Open a tunnel to the target through the proxy.

        Returns immediately; ``connect`` is emitted once the proxy has
        accepted the request.

        Raises:
            AlreadyConnectedError: If the tunnel is already established
            AlreadyConnectingError: If a handshake is in progress
            SocketClosedError: If the socket already failed or was closed
            MissingHostError: If no host was given
            MissingPortError: If no port was given
            InvalidHostError: If the host can not be sent to the proxy
        """
        if self.state is ConnectionState.ESTABLISHED:
            raise AlreadyConnectedError
        if self.state in _HANDSHAKE_STATES:
            raise AlreadyConnectingError
        if self.state is not ConnectionState.IDLE:
            raise SocketClosedError

        target, callback = normalize_connect_args(port, host, callback)
        encode_address(target.host)

        self.target = target
        self.state = ConnectionState.CONNECTING
        if callback is not None:
            self.once("connect", callback)

        # Binary data is expected on the socket until the handshake is done
        self.transport.set_encoding(None)

        logger.debug(f"Connecting to {target} through SOCKS proxy {self.proxy}")
        try:
            self.transport.connect(self.proxy.port, self.proxy.host, self._on_transport_connect)
        except Exception:
            self.state = ConnectionState.IDLE
            self.target = None
            if callback is not None:
                self.off("connect", callback)
            raise
        return self

    def _on_transport_connect(self) -> None:
        if self.state is not ConnectionState.CONNECTING:
            return
        self.state = ConnectionState.NEGOTIATING
        self.stage = 0
        try:
            self._send(build_greeting())
        except TransportWriteError as exc:
            self._fail(exc)

    def _send(self, request: bytes) -> None:
        logger.debug(f"Sending SOCKS data: {request.hex(' ')}")
        if not self.transport.write(request):
            raise TransportWriteError

    def _on_transport_data(self, chunk: bytes | str) -> None:
        if self.state is ConnectionState.ESTABLISHED:
            self.emit("data", chunk)
            return

        # Raw SOCKS data, useful for debugging the handshake
        self.emit("socksdata", chunk)
        if self.state is ConnectionState.NEGOTIATING:
            self.receive_socks_data(chunk)
        else:
            logger.debug(f"Dropping {len(chunk)} bytes received while {self.state.value}")

    def receive_socks_data(self, data: bytes) -> None:
        """Feed handshake bytes to the negotiation stages.

        Bytes left over once the last stage is done are emitted as the first
        payload of the tunnel.
        """
        logger.debug(f"Received SOCKS data: {bytes(data).hex(' ')}")
        self._handshake += data
        while self.state is ConnectionState.NEGOTIATING:
            try:
                consumed = self._stages[self.stage](bytes(self._handshake))
            except ProxyError as exc:
                self._fail(exc)
                return
            if consumed is None:
                return

            del self._handshake[:consumed]
            self.stage += 1
            if self.stage == len(self._stages):
                self._establish()

        payload = bytes(self._handshake)
        self._handshake.clear()
        if payload and self.state is ConnectionState.ESTABLISHED:
            # The transport decoder keeps a partial character for the next chunk
            chunk = self.transport.decode(payload)
            if chunk:
                self.emit("data", chunk)

    def _receive_socks_auth(self, data: bytes) -> int | None:
        consumed = parse_auth_reply(data)
        if consumed is not None:
            self._send_connect()
        return consumed

    def _receive_socks_connect(self, data: bytes) -> int | None:
        return parse_connect_reply(data)

    def _send_connect(self) -> None:
        self._send(build_connect_request(self.target.host, self.target.port))

    def _establish(self) -> None:
        self.state = ConnectionState.ESTABLISHED

        self.local_address = self.transport.local_address
        self.local_port = self.transport.local_port
        self.remote_address = self.transport.remote_address
        self.remote_port = self.transport.remote_port
        self.buffer_size = self.transport.buffer_size

        # Set the real encoding which could have been changed while connecting
        self.transport.set_encoding(self._encoding)

        writes, self._pending_writes = self._pending_writes, []
        for data, encoding, callback in writes:
            self.transport.write(data, encoding, callback)

        pipes, self._pending_pipes = self._pending_pipes, []
        for dest, options in pipes:
            pipe_stream(self, dest, options)

        if self._pending_end is not None:
            data, encoding = self._pending_end
            self._pending_end = None
            self.transport.end(data, encoding)

        logger.info(f"SOCKS tunnel to {self.target} established through {self.proxy}")
        self.emit("connect")

    def _discard_pending(self) -> None:
        self._pending_writes.clear()
        self._pending_pipes.clear()
        self._pending_end = None
        self._handshake.clear()

    def _fail(self, exc: Exception) -> None:
        self.state = ConnectionState.FAILED
        self._discard_pending()
        logger.warning(f"SOCKS handshake with {self.proxy} for {self.target} failed: {exc}")
        self.emit("error", exc)

    def _on_transport_error(self, exc: Exception) -> None:
        if self.state in _HANDSHAKE_STATES:
            self.state = ConnectionState.FAILED
            self._discard_pending()
        self.emit("error", exc)

    def _on_transport_end(self) -> None:
        self.writable = False
        self.emit("end")

    def _on_transport_close(self, had_error: bool = False) -> None:
        self.writable = False
        self.state = ConnectionState.CLOSED
        self._discard_pending()
        self.emit("close", had_error)

    def _on_transport_drain(self) -> None:
        if self.state is ConnectionState.ESTABLISHED:
            self.emit("drain")

    def write(
        self, data: bytes | str, encoding: str | None = None, callback: Callable[[], Any] | None = None
    ) -> bool:
        """Write data, queuing it until the tunnel is established."""
        if self.state is ConnectionState.ESTABLISHED:
            return self.transport.write(data, encoding, callback)
        if self.state in (ConnectionState.FAILED, ConnectionState.CLOSED):
            logger.warning(f"Dropping write on a {self.state.value} SOCKS socket")
            return False

        self._pending_writes.append((data, encoding, callback))
        return True

    def pipe(self, dest: Any, options: Mapping[str, Any] | None = None) -> Any:
        """Pipe tunnel data into dest, deferred until the tunnel is established."""
        if self.state is ConnectionState.ESTABLISHED:
            return pipe_stream(self, dest, options)
        if self.state not in (ConnectionState.FAILED, ConnectionState.CLOSED):
            self._pending_pipes.append((dest, options))
        return dest

    def end(self, data: bytes | str | None = None, encoding: str | None = None) -> "ProxySocket":
        """Finish writing, after any queued writes when still connecting."""
        self.writable = False
        if self.state is ConnectionState.ESTABLISHED:
            self.transport.end(data, encoding)
        elif self.state in _HANDSHAKE_STATES:
            self._pending_end = (data, encoding)
        else:
            self.transport.end()
        return self

    def set_encoding(self, encoding: str | None = None) -> "ProxySocket":
        if encoding is not None:
            codecs.lookup(encoding)
        if self.state is ConnectionState.ESTABLISHED:
            self.transport.set_encoding(encoding)
        self._encoding = encoding
        return self

    def decode(self, data: bytes) -> bytes | str:
        return self.transport.decode(data)

    def set_timeout(self, timeout: float, callback: Callable[[], Any] | None = None) -> "ProxySocket":
        if callback is not None:
            self.once("timeout", callback)
        self.transport.set_timeout(timeout)
        return self

    def set_no_delay(self, no_delay: bool = True) -> "ProxySocket":
        self.transport.set_no_delay(no_delay)
        return self

    def set_keep_alive(self, enable: bool = False, initial_delay: float = 0) -> "ProxySocket":
        self.transport.set_keep_alive(enable, initial_delay)
        return self

    def pause(self) -> "ProxySocket":
        self.transport.pause()
        return self

    def resume(self) -> "ProxySocket":
        self.transport.resume()
        return self

    def ref(self) -> "ProxySocket":
        self.transport.ref()
        return self

    def unref(self) -> "ProxySocket":
        self.transport.unref()
        return self

    def destroy(self) -> "ProxySocket":
        self.writable = False
        if self.state is not ConnectionState.ESTABLISHED:
            self.state = ConnectionState.CLOSED
            self._discard_pending()
        self.transport.destroy()
        return self

    def destroy_soon(self) -> "ProxySocket":
        self.writable = False
        if self.state is not ConnectionState.ESTABLISHED:
            self.state = ConnectionState.CLOSED
            self._discard_pending()
        self.transport.destroy_soon()
        return self

    def address(self) -> dict[str, Any]:
        return self.transport.address()
