"""Probe a target through a SOCKS5 proxy.

This module provides the logic behind ``proxy-socket probe``:
- Opening a tunnel to the target through the proxy
- Sending an optional payload, queued before the handshake completes
- Collecting the reply until the peer ends, closes or goes idle
- Displaying the result in a formatted table using Rich

Example:
    # Check that example.com:80 is reachable through a local proxy
    result = asyncio.run(probe(TargetEndpoint("example.com", 80), ProxyEndpoint(), b"HEAD / HTTP/1.0\\r\\n\\r\\n"))
    show_probe_result(result)
"""

import asyncio
import time
from dataclasses import dataclass, field

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from proxy_socket.core.lib.proxy_socket import ProxySocket
from proxy_socket.core.network import ProxyEndpoint, TargetEndpoint
from proxy_socket.core.utils.utils import format_bytes, format_hex

console = Console()

DEFAULT_IDLE_TIMEOUT = 5.0  # Seconds


@dataclass
class ProbeResult:
    """Outcome of a probe.

    Attributes:
        target: Destination the tunnel was opened to
        proxy: Proxy the tunnel went through
        local_address: Local end of the connection to the proxy
        handshake_time: Seconds from connect() to the established tunnel
        chunks: Payload received from the target
        encoding: Encoding the chunks were decoded with, None for raw bytes
        timed_out: True if the probe stopped because the peer went idle
    """

    target: TargetEndpoint
    proxy: ProxyEndpoint
    local_address: str = ""
    handshake_time: float = 0.0
    chunks: list[bytes | str] = field(default_factory=list)
    encoding: str | None = None
    timed_out: bool = False

    @property
    def received(self) -> int:
        """Number of payload bytes received, before any decoding."""
        return sum(
            len(chunk.encode(self.encoding or "utf-8") if isinstance(chunk, str) else chunk) for chunk in self.chunks
        )

    def payload_text(self) -> str:
        return "".join(
            chunk if isinstance(chunk, str) else chunk.decode("utf-8", errors="replace") for chunk in self.chunks
        )


async def probe(
    target: TargetEndpoint,
    proxy: ProxyEndpoint,
    payload: bytes | str | None = None,
    encoding: str | None = None,
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
) -> ProbeResult:
    """Open a tunnel, send payload and collect what the target answers.

    Raises:
        ProxyError: If the proxy rejects the handshake
        OSError: If the proxy can not be reached
    """
    loop = asyncio.get_running_loop()
    finished: asyncio.Future[None] = loop.create_future()
    result = ProbeResult(target=target, proxy=proxy, encoding=encoding)
    started = time.monotonic()

    def on_connect() -> None:
        result.handshake_time = time.monotonic() - started
        result.local_address = f"{sock.local_address}:{sock.local_port}"

    def on_timeout() -> None:
        if finished.done():
            return
        if not sock.connected:
            finished.set_exception(TimeoutError(f"SOCKS handshake with {proxy} timed out"))
            return
        result.timed_out = True
        finished.set_result(None)

    def on_error(exc: Exception) -> None:
        if not finished.done():
            finished.set_exception(exc)

    def on_close(had_error: bool = False) -> None:
        if not finished.done():
            finished.set_result(None)

    sock = ProxySocket(proxy.host, proxy.port)
    sock.on("socksdata", lambda chunk: logger.debug(f"Handshake bytes: {format_hex(chunk)}"))
    sock.on("data", result.chunks.append)
    sock.on("error", on_error)
    sock.on("end", on_close)
    sock.on("close", on_close)
    sock.on("timeout", on_timeout)
    if encoding:
        sock.set_encoding(encoding)
    sock.set_timeout(idle_timeout)
    sock.connect(target.port, target.host, on_connect)
    if payload:
        sock.write(payload, encoding)

    try:
        await finished
    finally:
        sock.destroy()

    logger.info(f"Probe of {target} received {result.received} bytes")
    return result


def show_probe_result(result: ProbeResult) -> None:
    """Display the probe result."""
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Property", style="cyan", no_wrap=True)
    table.add_column("Value", style="green", no_wrap=True)

    table.add_row("Target", str(result.target))
    table.add_row("Proxy", str(result.proxy))
    table.add_row("Local address", result.local_address or "-")
    table.add_row("Handshake", f"{result.handshake_time * 1000:.1f} ms")
    table.add_row("Received", format_bytes(result.received))
    if result.timed_out:
        table.add_row("Stopped", "idle timeout")

    title = Text("SOCKS5 Probe", style="bold cyan")
    console.print(Panel(table, title=title, border_style="blue", padding=(1, 2)))

    if result.chunks:
        console.print(Text(result.payload_text()))
