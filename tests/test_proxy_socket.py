import pytest
from conftest import AUTH_OK, CONNECT_OK, FakeTransport, Recorder, Sink

from proxy_socket.core.exceptions import (
    AlreadyConnectedError,
    AlreadyConnectingError,
    AuthProtocolError,
    ConnectProtocolError,
    ConnectRefusedError,
    InvalidHostError,
    MissingHostError,
    MissingPortError,
    SocketClosedError,
    TransportWriteError,
)
from proxy_socket.core.lib.proxy_socket import ConnectionState, ProxySocket
from proxy_socket.core.lib.transport import StreamTransport, Transport
from proxy_socket.core.network import TargetEndpoint


def test_defaults():
    sock = ProxySocket()
    assert (sock.socks_host, sock.socks_port) == ("127.0.0.1", 1080)
    assert isinstance(sock.transport, StreamTransport)
    assert sock.state is ConnectionState.IDLE


def test_proxy_socket_satisfies_transport_protocol(sock):
    assert isinstance(sock, Transport)
    assert isinstance(StreamTransport(), Transport)


def test_create_factory(transport):
    sock = ProxySocket.create("proxy.local", "9050", transport)
    assert (sock.socks_host, sock.socks_port) == ("proxy.local", 9050)
    assert sock.transport is transport


def test_connect_opens_transport_to_proxy(sock, transport):
    assert sock.connect(80, "example.com") is sock
    assert transport.connects == [(1080, "10.0.0.1")]
    assert sock.state is ConnectionState.CONNECTING
    assert transport.encodings == [None]
    assert transport.writes == []


def test_greeting_sent_on_transport_connect(sock, transport):
    sock.connect(80, "example.com")
    transport.complete_connect()
    assert transport.writes == [b"\x05\x01\x00"]
    assert sock.state is ConnectionState.NEGOTIATING
    assert sock.stage == 0


def test_auth_reply_triggers_connect_request(negotiating, transport):
    transport.receive(AUTH_OK)
    assert transport.writes[-1] == b"\x05\x01\x00\x03\x0bexample.com\x00\x50"
    assert negotiating.stage == 1
    assert negotiating.state is ConnectionState.NEGOTIATING


@pytest.mark.parametrize(
    ("args", "expected"),
    [
        ((80, "example.com"), TargetEndpoint("example.com", 80)),
        (("example.com", 80), TargetEndpoint("example.com", 80)),
        (({"host": "example.com", "port": "443"},), TargetEndpoint("example.com", 443)),
        ((TargetEndpoint("192.0.2.1", 22),), TargetEndpoint("192.0.2.1", 22)),
        ((8080,), TargetEndpoint("localhost", 8080)),
    ],
)
def test_connect_call_shapes(sock, args, expected):
    sock.connect(*args)
    assert sock.target == expected


def test_connect_with_port_and_callback(sock, transport):
    called = []
    sock.connect(8080, lambda: called.append(True))
    assert sock.target == TargetEndpoint("localhost", 8080)
    transport.complete_connect()
    transport.receive(AUTH_OK + CONNECT_OK)
    assert called == [True]


@pytest.mark.parametrize(
    ("args", "error"),
    [
        ((80, ""), MissingHostError),
        (({"host": "", "port": 80},), MissingHostError),
        ((None,), MissingPortError),
        (({"host": "example.com"},), MissingPortError),
        ((80, "a" * 256), InvalidHostError),
    ],
)
def test_connect_usage_errors_leave_socket_idle(sock, transport, args, error):
    with pytest.raises(error):
        sock.connect(*args)
    assert sock.state is ConnectionState.IDLE
    assert transport.connects == []


def test_second_connect_while_connecting_fails(sock, transport):
    sock.connect(80, "example.com")
    with pytest.raises(AlreadyConnectingError):
        sock.connect(80, "example.org")
    transport.complete_connect()
    with pytest.raises(AlreadyConnectingError):
        sock.connect(80, "example.org")
    assert len(transport.connects) == 1
    assert sock.target.host == "example.com"


def test_connect_after_established_fails(established, transport):
    with pytest.raises(AlreadyConnectedError):
        established.connect(80, "example.org")
    assert len(transport.connects) == 1


def test_connect_after_failure_fails(recorder, negotiating, transport):
    transport.receive(b"\x05\xff")
    with pytest.raises(SocketClosedError):
        negotiating.connect(80, "example.org")


def test_failed_transport_connect_call_restores_idle(sock, transport, monkeypatch):
    def refuse(*args, **kwargs):
        raise RuntimeError("no running event loop")

    monkeypatch.setattr(transport, "connect", refuse)
    callback = lambda: None  # noqa: E731
    with pytest.raises(RuntimeError):
        sock.connect(80, "example.com", callback)
    assert sock.state is ConnectionState.IDLE
    assert sock.listener_count("connect") == 0


def test_whole_handshake_and_payload_in_one_chunk(recorder, negotiating, transport):
    transport.receive(AUTH_OK + CONNECT_OK + b"\xff")

    assert recorder.named("connect") == [("connect",)]
    assert recorder.named("data") == [("data", b"\xff")]
    assert negotiating.state is ConnectionState.ESTABLISHED
    assert [name for name, *_ in recorder.events] == ["socksdata", "connect", "data"]


def test_handshake_bytes_are_never_payload(recorder, negotiating, transport):
    transport.receive(AUTH_OK)
    transport.receive(CONNECT_OK)

    assert recorder.named("data") == []
    assert recorder.named("socksdata") == [("socksdata", AUTH_OK), ("socksdata", CONNECT_OK)]
    assert recorder.named("connect") == [("connect",)]


def test_fragmented_replies_are_reassembled(recorder, negotiating, transport):
    for byte in AUTH_OK + CONNECT_OK:
        transport.receive(bytes([byte]))
        assert recorder.named("data") == []

    assert negotiating.state is ConnectionState.ESTABLISHED
    assert recorder.named("connect") == [("connect",)]
    assert transport.writes.count(b"\x05\x01\x00\x03\x0bexample.com\x00\x50") == 1


def test_domain_bound_address_is_skipped(recorder, negotiating, transport):
    reply = b"\x05\x00\x00\x03\x09localhost\x1f\x90"
    transport.receive(AUTH_OK)
    transport.receive(reply[:7])
    transport.receive(reply[7:] + b"hello")
    assert recorder.named("data") == [("data", b"hello")]


def test_established_data_passes_through(recorder, established, transport):
    transport.receive(b"\x05\x00")
    assert recorder.named("data") == [("data", b"\x05\x00")]
    assert len(recorder.named("socksdata")) == 0


def test_identity_copied_from_transport(established):
    assert established.local_address == "127.0.0.1"
    assert established.local_port == 50000
    assert established.remote_port == 1080
    assert established.address()["port"] == 50000


def test_unsupported_auth_method(recorder, negotiating, transport):
    transport.receive(b"\x05\x02")

    errors = recorder.named("error")
    assert len(errors) == 1
    assert isinstance(errors[0][1], AuthProtocolError)
    assert recorder.named("connect") == []
    assert negotiating.state is ConnectionState.FAILED
    assert transport.writes == [b"\x05\x01\x00"]


def test_refused_connect(recorder, negotiating, transport):
    transport.receive(AUTH_OK)
    transport.receive(b"\x05\x05\x00\x01\x00\x00\x00\x00\x00\x00")

    (_, error), = recorder.named("error")
    assert isinstance(error, ConnectRefusedError)
    assert error.reason == "connection refused by destination host"
    assert str(error) == "SOCKS connection failed. connection refused by destination host."
    assert recorder.named("connect") == []


def test_bad_connect_reply_header(recorder, negotiating, transport):
    transport.receive(AUTH_OK + b"\x05\x00\x01\x01\x00\x00\x00\x00\x00\x00")
    (_, error), = recorder.named("error")
    assert isinstance(error, ConnectProtocolError)


def test_no_stage_processing_after_failure(recorder, negotiating, transport):
    transport.receive(b"\x04\x00")
    transport.receive(AUTH_OK + CONNECT_OK)
    assert len(recorder.named("error")) == 1
    assert recorder.named("connect") == []
    assert negotiating.state is ConnectionState.FAILED


def test_greeting_write_rejected(recorder, sock, transport):
    transport.accept_writes = False
    sock.connect(80, "example.com")
    transport.complete_connect()
    (_, error), = recorder.named("error")
    assert isinstance(error, TransportWriteError)
    assert sock.state is ConnectionState.FAILED


def test_connect_request_write_rejected(recorder, negotiating, transport):
    transport.accept_writes = False
    transport.receive(AUTH_OK)
    (_, error), = recorder.named("error")
    assert isinstance(error, TransportWriteError)
    assert negotiating.stage == 0


def test_pending_io_replayed_in_order(sock, transport):
    sink = Sink()
    sock.write(b"A")
    sock.write("B", "ascii")
    assert sock.pipe(sink) is sink
    sock.connect(80, "example.com")
    transport.complete_connect()
    transport.receive(AUTH_OK + CONNECT_OK + b"first")
    transport.receive(b"second")

    assert transport.writes[-2:] == [b"A", "B"]
    assert sink.chunks == [b"first", b"second"]


def test_pending_write_callbacks_forwarded(negotiating, transport):
    callback = lambda: None  # noqa: E731
    negotiating.write(b"A", None, callback)
    transport.receive(AUTH_OK + CONNECT_OK)
    assert transport.write_callbacks == [callback]


def test_queued_writes_not_sent_before_established(negotiating, transport):
    negotiating.write(b"A")
    transport.receive(AUTH_OK)
    assert b"A" not in transport.writes


def test_writes_after_established_follow_queued_ones(negotiating, transport):
    negotiating.write(b"A")
    negotiating.on("connect", lambda: negotiating.write(b"B"))
    transport.receive(AUTH_OK + CONNECT_OK)
    assert transport.writes[-2:] == [b"A", b"B"]


def test_queues_discarded_after_failure(recorder, negotiating, transport):
    sink = Sink()
    negotiating.write(b"A")
    negotiating.pipe(sink)
    transport.receive(b"\x05\x02")

    assert negotiating.write(b"B") is False
    assert b"A" not in transport.writes
    assert b"B" not in transport.writes
    assert sink.chunks == []


def test_destroy_while_negotiating_discards_queues(recorder, negotiating, transport):
    negotiating.write(b"A")
    negotiating.end(b"bye")
    negotiating.destroy()
    assert negotiating.state is ConnectionState.CLOSED
    assert transport.destroyed

    transport.receive(AUTH_OK + CONNECT_OK)
    assert b"A" not in transport.writes
    assert transport.ended == []
    assert recorder.named("connect") == []


def test_transport_close_while_negotiating(recorder, negotiating, transport):
    negotiating.write(b"A")
    transport.emit("close", False)
    assert negotiating.state is ConnectionState.CLOSED
    assert recorder.named("close") == [("close", False)]
    transport.receive(AUTH_OK + CONNECT_OK)
    assert b"A" not in transport.writes


def test_transport_error_passed_through_verbatim(recorder, negotiating, transport):
    negotiating.write(b"A")
    error = ConnectionResetError("reset by peer")
    transport.emit("error", error)
    assert recorder.named("error") == [("error", error)]
    assert negotiating.state is ConnectionState.FAILED


def test_deferred_encoding_applied_on_establish(recorder, negotiating, transport):
    negotiating.set_encoding("utf-8")
    assert transport.encodings == [None]
    transport.receive(AUTH_OK + CONNECT_OK + "é".encode())
    assert transport.encodings == [None, "utf-8"]
    assert recorder.named("data") == [("data", "é")]


def test_character_split_across_connect_reply_is_joined(recorder, negotiating, transport):
    encoded = "é".encode()
    negotiating.set_encoding("utf-8")
    transport.receive(AUTH_OK + CONNECT_OK + encoded[:1])
    assert negotiating.state is ConnectionState.ESTABLISHED
    assert recorder.named("data") == []

    transport.receive(encoded[1:])
    assert recorder.named("data") == [("data", "é")]
    assert recorder.named("error") == []


def test_set_encoding_after_established(established, transport):
    established.set_encoding("latin-1")
    assert transport.encodings[-1] == "latin-1"


def test_set_encoding_rejects_unknown_codec(sock):
    with pytest.raises(LookupError):
        sock.set_encoding("no-such-codec")


def test_end_deferred_until_established(negotiating, transport):
    negotiating.write(b"A")
    negotiating.end(b"Z")
    assert transport.ended == []
    transport.receive(AUTH_OK + CONNECT_OK)
    assert transport.writes[-1] == b"A"
    assert transport.ended == [(b"Z", None)]
    assert negotiating.writable is False


def test_end_after_established(established, transport):
    established.end(b"bye", "ascii")
    assert transport.ended == [(b"bye", "ascii")]


def test_drain_only_forwarded_when_established(recorder, negotiating, transport):
    transport.emit("drain")
    assert recorder.named("drain") == []
    transport.receive(AUTH_OK + CONNECT_OK)
    transport.emit("drain")
    assert recorder.named("drain") == [("drain",)]


def test_end_and_timeout_forwarded(recorder, negotiating, transport):
    transport.emit("timeout")
    transport.emit("end")
    assert recorder.named("timeout") == [("timeout",)]
    assert recorder.named("end") == [("end",)]
    assert negotiating.writable is False


def test_socket_options_delegate_to_transport(sock, transport):
    timeouts = []
    sock.set_timeout(30, lambda: timeouts.append(True))
    sock.set_no_delay()
    sock.set_keep_alive(True, 10)
    sock.pause()
    sock.resume()
    sock.unref()
    sock.ref()
    assert transport.calls == [
        "set_timeout(30)",
        "set_no_delay(True)",
        "set_keep_alive(True, 10)",
        "pause",
        "resume",
        "unref",
        "ref",
    ]
    transport.emit("timeout")
    assert timeouts == [True]


def test_pipe_after_established(established, transport):
    sink = Sink()
    established.pipe(sink, {"end": False})
    transport.receive(b"data")
    transport.emit("end")
    assert sink.chunks == [b"data"]
    assert sink.ended is False


def test_pipe_ends_destination(established, transport):
    sink = Sink()
    established.pipe(sink)
    transport.emit("end")
    assert sink.ended is True


def test_proxy_socket_over_proxy_socket():
    inner_transport = FakeTransport()
    inner = ProxySocket("10.0.0.1", 1080, inner_transport)
    outer = ProxySocket("10.0.0.2", 1080, inner)
    recorder = Recorder(outer)

    outer.connect(443, "example.com")
    assert inner.target == TargetEndpoint("10.0.0.2", 1080)
    inner_transport.complete_connect()
    inner_transport.receive(AUTH_OK + CONNECT_OK)
    assert inner_transport.writes[-1] == b"\x05\x01\x00"

    inner_transport.receive(AUTH_OK + CONNECT_OK + b"!")
    assert outer.state is ConnectionState.ESTABLISHED
    assert recorder.named("data") == [("data", b"!")]
