"""Stream transport used to reach the SOCKS proxy.

This module provides:
- The Transport protocol, the socket-like surface the proxy socket needs
  from its transport and offers to its own callers
- StreamTransport, an asyncio implementation of that surface

StreamTransport wraps an asyncio connection and reports its life cycle
through events:
- ``connect`` once the TCP connection is up
- ``data`` for every chunk received (bytes, or str once an encoding is set)
- ``end`` when the peer finished sending
- ``timeout`` after the configured idle time
- ``drain`` when the write buffer has emptied after write() returned False
- ``error`` followed by ``close(had_error)`` when the connection fails

Timeouts are given in seconds. Socket options requested before the
connection exists are applied as soon as it is made.

Example:
    transport = StreamTransport()
    transport.on("data", print)
    transport.connect(1080, "127.0.0.1", lambda: transport.write(b"\\x05\\x01\\x00"))
"""

import asyncio
import codecs
import socket
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from proxy_socket.core.exceptions import AlreadyConnectedError, AlreadyConnectingError

from .events import EventEmitter, Listener, pipe_stream


@runtime_checkable
class Transport(Protocol):
    """Socket-like surface shared by StreamTransport and ProxySocket."""

    local_address: str | None
    local_port: int | None
    remote_address: str | None
    remote_port: int | None
    buffer_size: int

    def on(self, event: str, listener: Listener) -> Any: ...

    def once(self, event: str, listener: Listener) -> Any: ...

    def connect(self, port: Any, host: Any = None, callback: Callable[[], Any] | None = None) -> Any: ...

    def write(
        self, data: bytes | str, encoding: str | None = None, callback: Callable[[], Any] | None = None
    ) -> Any: ...

    def end(self, data: bytes | str | None = None, encoding: str | None = None) -> Any: ...

    def pipe(self, dest: Any, options: Mapping[str, Any] | None = None) -> Any: ...

    def set_encoding(self, encoding: str | None = None) -> Any: ...

    def decode(self, data: bytes) -> bytes | str: ...

    def set_timeout(self, timeout: float, callback: Callable[[], Any] | None = None) -> Any: ...

    def set_no_delay(self, no_delay: bool = True) -> Any: ...

    def set_keep_alive(self, enable: bool = False, initial_delay: float = 0) -> Any: ...

    def pause(self) -> Any: ...

    def resume(self) -> Any: ...

    def ref(self) -> Any: ...

    def unref(self) -> Any: ...

    def destroy(self) -> Any: ...

    def destroy_soon(self) -> Any: ...

    def address(self) -> dict[str, Any]: ...


class _StreamProtocol(asyncio.Protocol):
    """Forward asyncio protocol callbacks to the owning StreamTransport."""

    def __init__(self, owner: "StreamTransport") -> None:
        self._owner = owner

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._owner._attach(transport)

    def data_received(self, data: bytes) -> None:
        self._owner._on_data(data)

    def eof_received(self) -> bool:
        self._owner._on_eof()
        return False

    def connection_lost(self, exc: Exception | None) -> None:
        self._owner._on_lost(exc)

    def pause_writing(self) -> None:
        self._owner._write_paused = True

    def resume_writing(self) -> None:
        self._owner._write_paused = False
        self._owner.emit("drain")


class StreamTransport(EventEmitter):
    """TCP stream socket built on an asyncio connection."""

    def __init__(self) -> None:
        """Initialize an unconnected transport.

        The event loop is looked up when connect() is called, so the
        transport can be created outside of a running loop.
        """
        super().__init__()
        self.writable = False
        self.has_ref = True
        self._loop: asyncio.AbstractEventLoop | None = None
        self._transport: asyncio.Transport | None = None
        self._connect_task: asyncio.Task | None = None
        self._decoder: codecs.IncrementalDecoder | None = None
        self._timeout = 0.0
        self._timer: asyncio.TimerHandle | None = None
        self._no_delay: bool | None = None
        self._keep_alive: tuple[bool, float] | None = None
        self._pending_end: tuple[Any, str | None] | None = None
        self._write_paused = False
        self._paused = False
        self._destroyed = False
        self._closed = False

    def connect(self, port: Any, host: Any = None, callback: Callable[[], Any] | None = None) -> "StreamTransport":
        """Open a TCP connection to host:port.

        Must be called while an asyncio event loop is running.
        """
        if self._transport is not None:
            raise AlreadyConnectedError
        if self._connect_task is not None:
            raise AlreadyConnectingError

        self._loop = asyncio.get_running_loop()
        if callback is not None:
            self.once("connect", callback)
        self._connect_task = self._loop.create_task(self._open(host or "localhost", int(port)))
        return self

    async def _open(self, host: str, port: int) -> None:
        logger.debug(f"Opening TCP connection to {host}:{port}")
        try:
            await self._loop.create_connection(lambda: _StreamProtocol(self), host, port)
        except Exception as exc:
            logger.debug(f"TCP connection to {host}:{port} failed: {exc}")
            self.emit("error", exc)
            self._emit_close(had_error=True)

    def _attach(self, transport: asyncio.BaseTransport) -> None:
        if self._destroyed:
            transport.abort()
            return

        self._transport = transport
        self.writable = True
        if self._no_delay is not None:
            self._apply_no_delay()
        if self._keep_alive is not None:
            self._apply_keep_alive()
        if self._paused:
            transport.pause_reading()
        self._reset_timer()
        self.emit("connect")

        if self._pending_end is not None:
            data, encoding = self._pending_end
            self._pending_end = None
            self.end(data, encoding)

    def _on_data(self, data: bytes) -> None:
        self._reset_timer()
        chunk = self.decode(data)
        if chunk:
            self.emit("data", chunk)

    def _on_eof(self) -> None:
        self.writable = False
        self.emit("end")

    def _on_lost(self, exc: Exception | None) -> None:
        self.writable = False
        if exc is not None:
            self.emit("error", exc)
        self._emit_close(had_error=exc is not None)

    def _emit_close(self, had_error: bool) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        self.emit("close", had_error)

    @property
    def local_address(self) -> str | None:
        return self._extra_address("sockname", 0)

    @property
    def local_port(self) -> int | None:
        return self._extra_address("sockname", 1)

    @property
    def remote_address(self) -> str | None:
        return self._extra_address("peername", 0)

    @property
    def remote_port(self) -> int | None:
        return self._extra_address("peername", 1)

    @property
    def buffer_size(self) -> int:
        if self._transport is None:
            return 0
        return self._transport.get_write_buffer_size()

    def _extra_address(self, name: str, index: int) -> Any:
        if self._transport is None:
            return None
        info = self._transport.get_extra_info(name)
        return info[index] if info else None

    def write(
        self, data: bytes | str, encoding: str | None = None, callback: Callable[[], Any] | None = None
    ) -> bool:
        """Queue data on the connection.

        Returns:
            bool: False if the data could not be written or the write buffer
            is above its high-water mark
        """
        if self._transport is None or self._transport.is_closing():
            logger.warning("Write on a transport that is not connected")
            return False

        if isinstance(data, str):
            data = data.encode(encoding or "utf-8")
        self._transport.write(data)
        self._reset_timer()
        if callback is not None:
            self._loop.call_soon(callback)
        return not self._write_paused

    def end(self, data: bytes | str | None = None, encoding: str | None = None) -> "StreamTransport":
        """Send optional final data and half-close the connection."""
        if self._transport is None:
            if self._connect_task is not None and not self._destroyed:
                self._pending_end = (data, encoding)
            return self

        if data:
            self.write(data, encoding)
        self.writable = False
        if self._transport.is_closing():
            return self
        if self._transport.can_write_eof():
            self._transport.write_eof()
        else:
            self._transport.close()
        return self

    def pipe(self, dest: Any, options: Mapping[str, Any] | None = None) -> Any:
        return pipe_stream(self, dest, options)

    def set_encoding(self, encoding: str | None = None) -> "StreamTransport":
        """Deliver data as str decoded with encoding, or as bytes when None."""
        self._decoder = codecs.getincrementaldecoder(encoding)() if encoding else None
        return self

    def decode(self, data: bytes) -> bytes | str:
        """Decode data as if it had been received, keeping partial characters for the next chunk."""
        return self._decoder.decode(data) if self._decoder else data

    def set_timeout(self, timeout: float, callback: Callable[[], Any] | None = None) -> "StreamTransport":
        """Emit ``timeout`` after timeout seconds without activity, 0 disables."""
        if callback is not None:
            self.once("timeout", callback)
        self._timeout = timeout
        self._reset_timer()
        return self

    def _reset_timer(self) -> None:
        self._cancel_timer()
        if self._timeout > 0 and self._loop is not None and not self._closed:
            self._timer = self._loop.call_later(self._timeout, self._on_idle)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self) -> None:
        self._timer = None
        self.emit("timeout")

    def _socket(self) -> socket.socket | None:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("socket")

    def set_no_delay(self, no_delay: bool = True) -> "StreamTransport":
        self._no_delay = no_delay
        self._apply_no_delay()
        return self

    def _apply_no_delay(self) -> None:
        sock = self._socket()
        if sock is not None:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, int(self._no_delay))

    def set_keep_alive(self, enable: bool = False, initial_delay: float = 0) -> "StreamTransport":
        """Toggle TCP keep-alive, initial_delay is the idle time in seconds."""
        self._keep_alive = (enable, initial_delay)
        self._apply_keep_alive()
        return self

    def _apply_keep_alive(self) -> None:
        sock = self._socket()
        if sock is None:
            return
        enable, initial_delay = self._keep_alive
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, int(enable))
        # TCP_KEEPIDLE is not available on every platform
        if enable and initial_delay > 0 and hasattr(socket, "TCP_KEEPIDLE"):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, max(1, int(initial_delay)))

    def pause(self) -> "StreamTransport":
        self._paused = True
        if self._transport is not None and not self._transport.is_closing():
            self._transport.pause_reading()
        return self

    def resume(self) -> "StreamTransport":
        self._paused = False
        if self._transport is not None and not self._transport.is_closing():
            self._transport.resume_reading()
        return self

    def ref(self) -> "StreamTransport":
        """Record that the connection should keep the program alive.

        asyncio has no per-handle reference counting, so this only sets
        has_ref and does not change how long the event loop runs.
        """
        self.has_ref = True
        return self

    def unref(self) -> "StreamTransport":
        """Clear has_ref, without effect on the asyncio event loop."""
        self.has_ref = False
        return self

    def destroy(self) -> "StreamTransport":
        """Close the connection immediately, dropping unsent data."""
        self._destroyed = True
        self.writable = False
        self._pending_end = None
        if self._transport is not None:
            self._transport.abort()
        elif self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            self._loop.call_soon(self._emit_close, False)
        return self

    def destroy_soon(self) -> "StreamTransport":
        """Close the connection once buffered data has been written."""
        if self._transport is None:
            return self.destroy()
        self.writable = False
        self._transport.close()
        return self

    def address(self) -> dict[str, Any]:
        """Return the local address as a dict with address, family and port."""
        if self._transport is None:
            return {}
        sockname = self._transport.get_extra_info("sockname")
        if not sockname:
            return {}
        family = "IPv6" if len(sockname) == 4 else "IPv4"
        return {"address": sockname[0], "family": family, "port": sockname[1]}
