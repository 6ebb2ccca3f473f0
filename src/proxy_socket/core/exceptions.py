"""Custom exceptions for the SOCKS5 proxy socket.

This module defines the exceptions raised or signalled by the proxy socket.
They fall into three groups:
- Usage errors, raised synchronously from the offending call
- Protocol errors, signalled when the proxy sends unexpected handshake bytes
- Refusals and write failures, signalled during the handshake

Errors coming from the underlying TCP connection (``ConnectionResetError``,
``socket.gaierror`` and friends) are not wrapped; they reach the caller's
``error`` listener unchanged.

Example:
    sock = ProxySocket()
    sock.on("error", lambda exc: console.print(f"[red]Tunnel failed: {exc}"))
    try:
        sock.connect(443, "example.com")
    except UsageError as e:
        console.print(f"[red]Bad connect call: {e}")
"""


class ProxyError(Exception):
    """Base exception for proxy socket errors."""


class UsageError(ProxyError):
    """Raised when the proxy socket is used incorrectly."""


class AlreadyConnectedError(UsageError):
    """Raised when connect() is called on an established socket."""

    def __init__(self) -> None:
        super().__init__("Socket is already connected")


class AlreadyConnectingError(UsageError):
    """Raised when connect() is called while a handshake is in progress."""

    def __init__(self) -> None:
        super().__init__("Socket is already connecting")


class SocketClosedError(UsageError):
    """Raised when connect() is called on a failed or closed socket."""

    def __init__(self) -> None:
        super().__init__("Socket can not be reused after a failed or closed connection")


class MissingHostError(UsageError):
    """Raised when no target host is given."""

    def __init__(self) -> None:
        super().__init__("Host must be provided")


class MissingPortError(UsageError):
    """Raised when no target port is given."""

    def __init__(self) -> None:
        super().__init__("Port is required")


class InvalidPortError(UsageError):
    """Raised when the target port is not a valid TCP port."""


class InvalidHostError(UsageError):
    """Raised when the target host can not be encoded in a SOCKS5 request."""


class ProtocolError(ProxyError):
    """Raised when the proxy sends bytes that violate the SOCKS5 protocol."""


class AuthProtocolError(ProtocolError):
    """Raised when the method selection reply is invalid."""


class ConnectProtocolError(ProtocolError):
    """Raised when the connect reply is malformed."""


class ConnectRefusedError(ProxyError):
    """Raised when the proxy rejects the connect request.

    Attributes:
        code: Reply code sent by the proxy
        reason: Human readable reason for the reply code
    """

    def __init__(self, code: int, reason: str) -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"SOCKS connection failed. {reason}.")


class TransportWriteError(ProxyError):
    """Raised when the transport refuses a handshake write."""

    def __init__(self) -> None:
        super().__init__("Unable to write to SOCKS socket")
