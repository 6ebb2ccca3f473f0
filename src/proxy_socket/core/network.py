"""Proxy and target endpoint handling.

This module provides:
- The proxy endpoint with its defaults
- The target endpoint a tunnel is opened to
- Normalization of the different connect() calling conventions

connect() accepts the same argument shapes as a plain stream socket:
- ``connect(port, host, callback)``
- ``connect(port, callback)`` with the host defaulting to localhost
- ``connect(host, port)`` kept for backward compatibility
- ``connect(endpoint)`` with a TargetEndpoint or a mapping holding host and port

Example:
    target, callback = normalize_connect_args(443, "example.com", None)
    print(f"Tunnelling to {target.host}:{target.port}")
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final

from proxy_socket.core.exceptions import InvalidPortError, MissingHostError, MissingPortError

DEFAULT_SOCKS_HOST: Final = "127.0.0.1"
DEFAULT_SOCKS_PORT: Final = 1080
DEFAULT_TARGET_HOST: Final = "localhost"
MAX_PORT: Final = 65535


@dataclass(frozen=True)
class ProxyEndpoint:
    """Address of the SOCKS5 proxy.

    Attributes:
        host: Proxy host name or IP address
        port: Proxy TCP port
    """

    host: str = DEFAULT_SOCKS_HOST
    port: int = DEFAULT_SOCKS_PORT

    @classmethod
    def from_options(cls, host: str | None = None, port: int | str | None = None) -> "ProxyEndpoint":
        """Build an endpoint, falling back to the defaults for missing values."""
        return cls(host=host or DEFAULT_SOCKS_HOST, port=parse_port(port) if port else DEFAULT_SOCKS_PORT)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class TargetEndpoint:
    """Destination reached through the proxy."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def parse_port(value: Any) -> int:
    """Convert a port given as int or numeric string into a valid port number."""
    if value is None or value == "":
        raise MissingPortError
    if isinstance(value, bool):
        raise InvalidPortError(f"Invalid port: {value!r}")
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidPortError(f"Invalid port: {value!r}") from exc
    if not 0 <= port <= MAX_PORT:
        raise InvalidPortError(f"Port must be between 0 and {MAX_PORT}, got {port}")
    return port


def normalize_connect_args(
    port: Any, host: Any = None, callback: Callable[[], Any] | None = None
) -> tuple[TargetEndpoint, Callable[[], Any] | None]:
    """Turn any supported connect() call shape into a target and callback.

    Raises:
        MissingPortError: If no port was given
        InvalidPortError: If the port is not a valid TCP port
        MissingHostError: If the host is empty
    """
    if callback is None and callable(host):
        callback, host = host, None

    if isinstance(port, TargetEndpoint):
        target_host, target_port = port.host, port.port
    elif isinstance(port, Mapping):
        target_host, target_port = port.get("host"), port.get("port")
    elif isinstance(port, str) and not port.isdigit():
        # backward compatibility: connect(host, port)
        target_host, target_port = port, host
    elif isinstance(port, (int, str)) and not isinstance(port, bool):
        target_host = host if isinstance(host, str) else DEFAULT_TARGET_HOST
        target_port = port
    else:
        raise MissingPortError

    if not target_host:
        raise MissingHostError
    return TargetEndpoint(host=target_host, port=parse_port(target_port)), callback
