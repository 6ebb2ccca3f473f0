"""Transparent SOCKS5 client socket for tunnelling TCP streams through a proxy."""

import pathlib
import sys

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from proxy_socket.core.proxy import ProxySocket, create_connector, open_connection


def get_version() -> str:
    """Read version from pyproject.toml."""
    # Start from the current file's directory
    current_dir = pathlib.Path(__file__).parent
    # Look for pyproject.toml in parent directories
    for parent in [current_dir] + list(current_dir.parents):
        pyproject_path = parent / "pyproject.toml"
        if pyproject_path.exists():
            with pyproject_path.open("rb") as f:
                pyproject_data = tomllib.load(f)
            if pyproject_data.get("project", {}).get("name") == "proxy-socket":
                return pyproject_data["project"]["version"]

    # Fallback version if file not found
    return "0.0.0"


__version__ = get_version()

__all__ = ["__version__", "create_connector", "open_connection", "ProxySocket"]
