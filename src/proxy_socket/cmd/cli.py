"""Command-line interface for the SOCKS5 proxy socket.

This module provides the main command-line interface, handling:
- Command-line argument parsing
- Proxy configuration from options or environment variables
- Logging setup
- Error reporting

The CLI is built using Typer and provides a user-friendly interface for:
- Probing a target through a SOCKS5 proxy
- Inspecting the raw handshake with debug logging
- Showing the installed version

Example:
    # Run from command line:
    $ proxy-socket probe example.com 80 --proxy-port 9050 --send $'HEAD / HTTP/1.0\\r\\n\\r\\n'
"""

import asyncio

import typer
from loguru import logger
from rich.console import Console

from proxy_socket import __version__
from proxy_socket.cmd.probe import DEFAULT_IDLE_TIMEOUT, probe, show_probe_result
from proxy_socket.core.exceptions import ProxyError
from proxy_socket.core.network import DEFAULT_SOCKS_HOST, DEFAULT_SOCKS_PORT, ProxyEndpoint, TargetEndpoint
from proxy_socket.core.utils.log_config import setup_logging

console = Console()
app = typer.Typer(help="Open TCP connections through a SOCKS5 proxy")


@app.command(name="version")
def show_version():
    """Show version information."""
    console.print(f"[cyan]Proxy Socket v{__version__}[/cyan]")


@app.command(name="probe")
def probe_target(
    host: str = typer.Argument(..., help="Target host, resolved by the proxy"),
    port: int = typer.Argument(..., min=0, max=65535, help="Target port"),
    proxy_host: str = typer.Option(
        DEFAULT_SOCKS_HOST, "--proxy-host", envvar="SOCKS_PROXY_HOST", help="SOCKS5 proxy host"
    ),
    proxy_port: int = typer.Option(
        DEFAULT_SOCKS_PORT, "--proxy-port", min=1, max=65535, envvar="SOCKS_PROXY_PORT", help="SOCKS5 proxy port"
    ),
    send: str | None = typer.Option(None, "--send", "-s", help="Text to send once the tunnel is open"),
    encoding: str | None = typer.Option(None, "--encoding", help="Decode received data with this encoding"),
    timeout: float = typer.Option(
        DEFAULT_IDLE_TIMEOUT, "--timeout", "-t", min=0.1, help="Seconds to wait for data before giving up"
    ),
    debug: bool = typer.Option(
        default=False,
        help="Enable debug logging, including raw handshake bytes",
    ),
):
    """Open a tunnel to HOST:PORT through the proxy and show what comes back."""
    setup_logging(debug)

    target = TargetEndpoint(host=host, port=port)
    proxy = ProxyEndpoint(host=proxy_host, port=proxy_port)
    logger.info(f"Probing {target} through SOCKS proxy {proxy}")

    try:
        result = asyncio.run(probe(target, proxy, send, encoding, timeout))
    except (ProxyError, OSError, LookupError, UnicodeError) as e:
        logger.debug(f"Probe of {target} failed: {e!r}")
        console.print(f"[red]Error: {e}")
        raise typer.Exit(code=1) from e
    except KeyboardInterrupt:
        logger.info("Probe interrupted")
        raise typer.Exit(code=130) from None

    show_probe_result(result)


if __name__ == "__main__":
    app()
