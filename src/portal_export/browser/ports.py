from __future__ import annotations

import logging
import socket

from portal_export.errors import NoFreePort

LOGGER = logging.getLogger(__name__)

DEFAULT_PORT_ATTEMPTS = 100
MAX_PORT = 65535


def allocate_port(start_port: int, *, attempts: int = DEFAULT_PORT_ATTEMPTS, host: str = "127.0.0.1") -> int:
    """Return the first port at or above ``start_port`` that can be bound locally.

    The probe socket is closed before returning so the browser can listen on the port.
    """
    for port in range(start_port, start_port + attempts):
        if port > MAX_PORT:
            break
        if _can_bind(host, port):
            LOGGER.debug("Allocated debugging port %s", port)
            return port
        LOGGER.debug("Port %s is busy", port)
    raise NoFreePort(f"No free port found in {attempts} attempts starting at {start_port}")


def _can_bind(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        try:
            probe.bind((host, port))
        except OSError:
            return False
    return True
