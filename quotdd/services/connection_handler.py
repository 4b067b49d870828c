"""Serve one accepted connection.

The handler consults the rate limiter, writes a single quote line to admitted
peers and closes the connection on every path. It never reads from the peer:
connecting is the whole request.
"""

from __future__ import annotations

import asyncio
import logging
import random
import socket
from typing import Callable, Sequence

from quotdd.adapters.rate_limit.base import AbstractRateLimiter
from quotdd.core.errors import ConnectionAppError

logger = logging.getLogger(__name__)


def _shutdown(conn: socket.socket, peer_host: str) -> None:
    """Close the write side so the peer sees a clean end of stream."""

    try:
        conn.shutdown(socket.SHUT_WR)
    except OSError as exc:
        raise ConnectionAppError(
            code="shutdown_failed",
            message=f"closing connection: {exc}",
            details={"step": "closing connection", "peer": peer_host},
        ) from exc


async def _write_quote(
    conn: socket.socket,
    peer_host: str,
    payload: bytes,
    write_timeout: float | None,
) -> None:
    loop = asyncio.get_running_loop()
    try:
        await asyncio.wait_for(loop.sock_sendall(conn, payload), write_timeout)
    except (OSError, asyncio.TimeoutError) as exc:
        reason = str(exc) or "timed out"
        raise ConnectionAppError(
            code="write_failed",
            message=f"writing quote: {reason}",
            details={"step": "writing quote", "peer": peer_host},
        ) from exc


async def handle_connection(
    conn: socket.socket,
    peer_host: str,
    *,
    limiter: AbstractRateLimiter,
    quotes: Sequence[str],
    choose: Callable[[Sequence[str]], str] = random.choice,
    write_timeout: float | None = None,
) -> bool:
    """Apply the admission decision to one connection.

    Args:
        conn: Accepted non-blocking socket. Always closed on return.
        peer_host: Remote address used as the rate limiting key.
        limiter: Admission control shared by the service loop.
        quotes: Non-empty quote corpus.
        choose: Picks the quote to send (uniformly random by default).
        write_timeout: Optional limit in seconds for writing the quote.

    Returns:
        True when a quote was written, False when the peer was rejected.

    Raises:
        ConnectionAppError: If writing or shutting down the connection fails.
    """

    try:
        if not limiter.accept(peer_host):
            logger.debug("rate_limit.rejected", extra={"peer": peer_host})
            _shutdown(conn, peer_host)
            return False

        quote = choose(quotes)
        payload = quote.encode("utf-8") + b"\n"
        await _write_quote(conn, peer_host, payload, write_timeout)
        _shutdown(conn, peer_host)

        logger.debug(
            "connection.served",
            extra={"peer": peer_host, "bytes": len(payload)},
        )
        return True
    finally:
        conn.close()
