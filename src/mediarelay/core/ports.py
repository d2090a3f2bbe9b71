"""Ordered port selection for the server process.

The server prefers its primary port and falls back to the next candidate
when the port is already bound.  Each probe is recorded so ``main()`` can
log exactly what happened.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortAttempt:
    """Outcome of probing one candidate port."""

    port: int
    available: bool
    error: str | None = None


def probe_ports(host: str, candidates: list[int]) -> list[PortAttempt]:
    """Try to bind each candidate in order, stopping at the first free one.

    Args:
        host: Address to bind.
        candidates: Ports in preference order.

    Returns:
        One :class:`PortAttempt` per probed port.  The last entry is the
        available port, if any was found.
    """
    attempts: list[PortAttempt] = []
    for port in candidates:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError as exc:
                attempts.append(PortAttempt(port=port, available=False, error=str(exc)))
                continue
        attempts.append(PortAttempt(port=port, available=True))
        break
    return attempts


def select_port(host: str, candidates: list[int]) -> int:
    """Return the first bindable port among *candidates*.

    Raises:
        OSError: If no candidate port can be bound.
    """
    attempts = probe_ports(host, candidates)
    for attempt in attempts:
        if attempt.available:
            logger.info(f"Port {attempt.port} is available")
        else:
            logger.warning(f"Port {attempt.port} is unavailable: {attempt.error}")

    if attempts and attempts[-1].available:
        return attempts[-1].port
    raise OSError(f"None of the candidate ports are available: {candidates}")
