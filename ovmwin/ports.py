"""Finding a free TCP port."""

from __future__ import annotations

import socket

_SEARCH_RANGE = 100


def _check_port(port: int) -> None:
    if socket.has_dualstack_ipv6():
        server = socket.create_server(("", port), family=socket.AF_INET6, dualstack_ipv6=True)
    else:
        server = socket.create_server(("", port))
    server.close()


def find_usable_port(start_port: int) -> int:
    """Return the first port from ``start_port`` on that can be listened on."""
    last_error: OSError = OSError(f"no port available from {start_port}")
    for port in range(start_port, start_port + _SEARCH_RANGE):
        try:
            _check_port(port)
        except OSError as exc:
            last_error = OSError(f"port {port} is occupied, {exc}")
            continue
        return port
    raise last_error