"""Shared fixtures for the proxy socket tests."""

import codecs

import pytest

from proxy_socket.core.lib.events import EventEmitter, pipe_stream
from proxy_socket.core.lib.proxy_socket import ProxySocket

AUTH_OK = b"\x05\x00"
CONNECT_OK = b"\x05\x00\x00\x01\x7f\x00\x00\x01\x04\x38"


class FakeTransport(EventEmitter):
    """In-memory transport recording every call made by the proxy socket."""

    def __init__(self) -> None:
        super().__init__()
        self.connects: list[tuple] = []
        self.writes: list[bytes | str] = []
        self.write_callbacks: list = []
        self.encodings: list[str | None] = []
        self.ended: list[tuple] = []
        self.calls: list[str] = []
        self.accept_writes = True
        self.destroyed = False
        self.local_address = "127.0.0.1"
        self.local_port = 50000
        self.remote_address = "127.0.0.1"
        self.remote_port = 1080
        self.buffer_size = 0
        self._connect_callback = None
        self._decoder = None

    def connect(self, port, host=None, callback=None):
        self.connects.append((port, host))
        self._connect_callback = callback
        return self

    def complete_connect(self) -> None:
        self._connect_callback()

    def receive(self, data: bytes) -> None:
        chunk = self.decode(data)
        if chunk:
            self.emit("data", chunk)

    def write(self, data, encoding=None, callback=None):
        self.writes.append(data)
        if callback is not None:
            self.write_callbacks.append(callback)
        return self.accept_writes

    def end(self, data=None, encoding=None):
        self.ended.append((data, encoding))
        return self

    def pipe(self, dest, options=None):
        return pipe_stream(self, dest, options)

    def set_encoding(self, encoding=None):
        self.encodings.append(encoding)
        self._decoder = codecs.getincrementaldecoder(encoding)() if encoding else None
        return self

    def decode(self, data):
        return self._decoder.decode(data) if self._decoder else data

    def set_timeout(self, timeout, callback=None):
        self.calls.append(f"set_timeout({timeout})")
        return self

    def set_no_delay(self, no_delay=True):
        self.calls.append(f"set_no_delay({no_delay})")
        return self

    def set_keep_alive(self, enable=False, initial_delay=0):
        self.calls.append(f"set_keep_alive({enable}, {initial_delay})")
        return self

    def pause(self):
        self.calls.append("pause")
        return self

    def resume(self):
        self.calls.append("resume")
        return self

    def ref(self):
        self.calls.append("ref")
        return self

    def unref(self):
        self.calls.append("unref")
        return self

    def destroy(self):
        self.destroyed = True
        return self

    def destroy_soon(self):
        self.destroyed = True
        return self

    def address(self):
        return {"address": self.local_address, "family": "IPv4", "port": self.local_port}


class Sink:
    """Pipe destination collecting everything written to it."""

    def __init__(self) -> None:
        self.chunks: list = []
        self.ended = False

    def write(self, chunk):
        self.chunks.append(chunk)
        return True

    def end(self):
        self.ended = True


class Recorder:
    """Collect the events a proxy socket emits."""

    def __init__(self, sock: ProxySocket) -> None:
        self.events: list[tuple] = []
        for name in ("connect", "data", "end", "close", "timeout", "error", "drain", "socksdata"):
            sock.on(name, self._record(name))

    def _record(self, name):
        def listener(*args):
            self.events.append((name, *args))

        return listener

    def named(self, name: str) -> list[tuple]:
        return [event for event in self.events if event[0] == name]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sock(transport: FakeTransport) -> ProxySocket:
    return ProxySocket("10.0.0.1", 1080, transport)


@pytest.fixture
def recorder(sock: ProxySocket) -> Recorder:
    return Recorder(sock)


@pytest.fixture
def negotiating(sock: ProxySocket, transport: FakeTransport) -> ProxySocket:
    """Proxy socket that has connected to the proxy and sent its greeting."""
    sock.connect(80, "example.com")
    transport.complete_connect()
    return sock


@pytest.fixture
def established(negotiating: ProxySocket, transport: FakeTransport) -> ProxySocket:
    transport.receive(AUTH_OK + CONNECT_OK)
    return negotiating
