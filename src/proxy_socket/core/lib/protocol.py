"""SOCKS5 wire format for the client side of the handshake.

This module implements the parts of RFC 1928 a CONNECT-only client needs:
- The method selection greeting (no authentication only)
- Connect request encoding for IPv4, IPv6 and domain name targets
- Incremental parsing of the method selection and connect replies
- The table of reply codes the proxy may answer with

The reply parsers never assume a reply arrives in one piece. They look at the
bytes received so far and return how many of them make up the reply, or
``None`` when more bytes are needed.

Example:
    request = build_connect_request("example.com", 443)
    # b'\\x05\\x01\\x00\\x03\\x0bexample.com\\x01\\xbb'
"""

import ipaddress
import struct
from types import MappingProxyType
from typing import Final

from proxy_socket.core.exceptions import (
    AuthProtocolError,
    ConnectProtocolError,
    ConnectRefusedError,
    InvalidHostError,
    ProtocolError,
)

# SOCKS protocol constants
SOCKS_VERSION: Final = 5
METHOD_NO_AUTH: Final = 0
CONNECT_CMD: Final = 1
RESERVED: Final = 0

# Address types
ADDR_TYPE_IPV4: Final = 1
ADDR_TYPE_DOMAIN: Final = 3
ADDR_TYPE_IPV6: Final = 4

# Response codes
RESP_SUCCESS: Final = 0

MAX_DOMAIN_LENGTH: Final = 255
AUTH_REPLY_LENGTH: Final = 2
CONNECT_REPLY_HEADER_LENGTH: Final = 4

# Messages are taken from Wikipedia
REPLY_MESSAGES: Final = MappingProxyType(
    {
        0x00: "request granted",
        0x01: "general failure",
        0x02: "connection not allowed by ruleset",
        0x03: "network unreachable",
        0x04: "host unreachable",
        0x05: "connection refused by destination host",
        0x06: "TTL expired",
        0x07: "command not supported / protocol error",
        0x08: "address type not supported",
    }
)

_ADDRESS_LENGTHS: Final = MappingProxyType({ADDR_TYPE_IPV4: 4, ADDR_TYPE_IPV6: 16})


def reply_reason(code: int) -> str:
    """Return the human readable reason for a reply code."""
    return REPLY_MESSAGES.get(code, f"unknown reply code 0x{code:02x}")


def build_greeting() -> bytes:
    """Build the method selection message offering only 'no authentication'."""
    return struct.pack("!BBB", SOCKS_VERSION, 1, METHOD_NO_AUTH)


def _encode_domain(host: str) -> bytes:
    try:
        name = host.encode("ascii")
    except UnicodeEncodeError:
        try:
            name = host.encode("idna")
        except UnicodeError as exc:
            raise InvalidHostError(f"Host {host!r} can not be encoded as a domain name") from exc

    if not name:
        raise InvalidHostError("Domain name must not be empty")
    if len(name) > MAX_DOMAIN_LENGTH:
        raise InvalidHostError(
            f"Domain name is {len(name)} bytes long, SOCKS5 allows at most {MAX_DOMAIN_LENGTH}"
        )
    return struct.pack("!BB", ADDR_TYPE_DOMAIN, len(name)) + name


def encode_address(host: str) -> bytes:
    """Encode a target host as an address type byte followed by the address.

    Numeric IPv4 and IPv6 addresses are sent as raw octets. Anything else is
    sent as a length prefixed domain name so the proxy resolves it.

    Args:
        host: IPv4 literal, IPv6 literal or host name

    Returns:
        bytes: ATYP and address fields of a SOCKS5 request

    Raises:
        InvalidHostError: If a domain name is empty or longer than 255 bytes
    """
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return _encode_domain(host)

    if ip.version == 4:
        return struct.pack("!B", ADDR_TYPE_IPV4) + ip.packed
    return struct.pack("!B", ADDR_TYPE_IPV6) + ip.packed


def build_connect_request(host: str, port: int) -> bytes:
    """Build a CONNECT request for host and port."""
    header = struct.pack("!BBB", SOCKS_VERSION, CONNECT_CMD, RESERVED)
    return header + encode_address(host) + struct.pack("!H", port)


def decode_address(data: bytes, offset: int = 0) -> tuple[str, int, int] | None:
    """Decode an ATYP, address and port sequence.

    Args:
        data: Buffer holding the encoded address
        offset: Position of the address type byte in data

    Returns:
        tuple[str, int, int] | None: Host, port and the offset just past the
        port, or None if data ends before the address is complete

    Raises:
        ProtocolError: If the address type is unknown
    """
    if len(data) <= offset:
        return None

    addr_type = data[offset]
    start = offset + 1
    if addr_type == ADDR_TYPE_DOMAIN:
        if len(data) <= start:
            return None
        end = start + 1 + data[start]
        start += 1
    elif addr_type in _ADDRESS_LENGTHS:
        end = start + _ADDRESS_LENGTHS[addr_type]
    else:
        raise ProtocolError(f"Unknown address type: {addr_type}")

    if len(data) < end + 2:
        return None

    raw = data[start:end]
    if addr_type == ADDR_TYPE_DOMAIN:
        host = raw.decode("ascii", errors="replace")
    else:
        host = str(ipaddress.ip_address(raw))
    (port,) = struct.unpack_from("!H", data, end)
    return host, port, end + 2


def parse_auth_reply(data: bytes) -> int | None:
    """Validate the method selection reply.

    Returns:
        int | None: Number of bytes belonging to the reply, or None if
        fewer than two bytes have arrived

    Raises:
        AuthProtocolError: If the version or the selected method is unexpected
    """
    if len(data) < AUTH_REPLY_LENGTH:
        return None

    version, method = data[0], data[1]
    if version != SOCKS_VERSION:
        raise AuthProtocolError(
            f"SOCKS authentication failed. Unexpected SOCKS version number: {version}."
        )
    if method != METHOD_NO_AUTH:
        raise AuthProtocolError(
            f"SOCKS authentication failed. Unexpected SOCKS authentication method: {method}."
        )
    return AUTH_REPLY_LENGTH


def parse_connect_reply(data: bytes) -> int | None:
    """Validate the connect reply header and measure the whole reply.

    The version, reply code and reserved byte are checked as soon as they
    arrive. The bound address is only measured so the bytes after it can be
    handed over as payload.

    Returns:
        int | None: Number of bytes belonging to the reply, or None if the
        reply is still incomplete

    Raises:
        ConnectProtocolError: On a bad version, reserved byte or address type
        ConnectRefusedError: If the proxy answered with a non-zero reply code
    """
    if len(data) >= 1 and data[0] != SOCKS_VERSION:
        raise ConnectProtocolError(
            f"SOCKS connection failed. Unexpected SOCKS version number: {data[0]}."
        )
    if len(data) >= 2 and data[1] != RESP_SUCCESS:
        raise ConnectRefusedError(data[1], reply_reason(data[1]))
    if len(data) >= 3 and data[2] != RESERVED:
        raise ConnectProtocolError("SOCKS connection failed. The reserved byte must be 0x00.")
    if len(data) < CONNECT_REPLY_HEADER_LENGTH:
        return None

    try:
        bound = decode_address(data, CONNECT_REPLY_HEADER_LENGTH - 1)
    except ProtocolError as exc:
        raise ConnectProtocolError(f"SOCKS connection failed. {exc}.") from exc
    if bound is None:
        return None
    return bound[2]
