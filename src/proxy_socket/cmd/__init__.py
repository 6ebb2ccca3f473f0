"""Command line interface modules.

This package provides the command-line tools for:
- Probing a target through a SOCKS5 proxy
- Inspecting the raw handshake bytes
- Error reporting and logging

The command modules provide a user-friendly way to check that a proxy
accepts connections before pointing other software at it.
"""
