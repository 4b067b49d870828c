"""Service loop owning the listening socket and the decay timer.

Each iteration races two events, a pending accept and the next decay tick,
and handles exactly one of them. Connections are served one at a time: the
next accept is not processed until the current connection is closed. Both
the limiter and the loop live on a single event loop thread, so the limiter
needs no locking.
"""

from __future__ import annotations

import asyncio
import logging
import random
import socket
from typing import Callable, Sequence

from quotdd.adapters.rate_limit.base import AbstractRateLimiter
from quotdd.adapters.rate_limit.in_memory import InMemoryDecayingRateLimiter
from quotdd.core.config import Settings
from quotdd.core.errors import BindAppError, ConnectionAppError
from quotdd.core.logging import clear_peer, set_peer
from quotdd.quotes import ensure_quotes
from quotdd.services.connection_handler import handle_connection
from quotdd.utils.ticker import DecayTicker

logger = logging.getLogger(__name__)


class QuoteService:
    """Quote of the day responder with per-address admission control."""

    def __init__(
        self,
        settings: Settings,
        quotes: Sequence[str],
        *,
        limiter: AbstractRateLimiter | None = None,
        choose: Callable[[Sequence[str]], str] = random.choice,
    ) -> None:
        self._settings = settings
        self._quotes = ensure_quotes(quotes)
        self._choose = choose
        self.limiter = limiter or InMemoryDecayingRateLimiter(
            threshold=settings.rate_limit.threshold,
            decay=settings.rate_limit.decay,
        )
        self._sock: socket.socket | None = None

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port) of the listening socket."""
        if self._sock is None:
            raise RuntimeError("service is not bound")
        host, port = self._sock.getsockname()[:2]
        return host, port

    def bind(self) -> tuple[str, int]:
        """Create the listening socket.

        Returns:
            The bound (host, port); the port is resolved when configured as 0.

        Raises:
            BindAppError: If the address cannot be bound or listened on.
        """

        server = self._settings.server
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((server.host, server.port))
            sock.listen(server.backlog)
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise BindAppError(
                code="bind_failed",
                message=f"binding on port {server.port}: {exc}",
                details={"port": server.port, "step": "binding"},
            ) from exc

        self._sock = sock
        host, port = self.address
        logger.info("Listening on socket %s:%d", host, port)
        return host, port

    def close(self) -> None:
        """Close the listening socket."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _connection_failed(self, exc: ConnectionAppError) -> None:
        if self._settings.server.connection_error_policy == "fail":
            raise exc
        logger.warning(
            "connection.error",
            extra={
                "error_code": exc.code,
                "error_message": exc.message,
                "step": (exc.details or {}).get("step"),
            },
        )

    async def _serve_connection(self, conn: socket.socket, peer: tuple) -> None:
        peer_host = peer[0]
        set_peer(peer_host)
        try:
            await handle_connection(
                conn,
                peer_host,
                limiter=self.limiter,
                quotes=self._quotes,
                choose=self._choose,
                write_timeout=self._settings.server.write_timeout_seconds,
            )
        except ConnectionAppError as exc:
            self._connection_failed(exc)
        finally:
            clear_peer()

    async def serve_forever(self) -> None:
        """Accept and serve connections until cancelled or a fatal error.

        Raises:
            RuntimeError: If bind() was not called first.
            ConnectionAppError: On a connection I/O error when the error
                policy is ``fail``.
        """

        if self._sock is None:
            raise RuntimeError("bind() must be called before serve_forever()")

        loop = asyncio.get_running_loop()
        ticker = DecayTicker(self._settings.rate_limit.period_seconds, clock=loop.time)
        accept_task: asyncio.Future | None = None
        tick_task: asyncio.Future | None = None

        try:
            while True:
                if accept_task is None:
                    accept_task = asyncio.ensure_future(loop.sock_accept(self._sock))
                if tick_task is None:
                    tick_task = asyncio.ensure_future(ticker.wait())

                await asyncio.wait(
                    {accept_task, tick_task}, return_when=asyncio.FIRST_COMPLETED
                )

                if tick_task.done():
                    tick_task.result()
                    tick_task = None
                    self.limiter.decay()
                    continue

                finished, accept_task = accept_task, None
                try:
                    conn, peer = finished.result()
                except OSError as exc:
                    self._connection_failed(
                        ConnectionAppError(
                            code="accept_failed",
                            message=f"accepting connection: {exc}",
                            details={"step": "accepting connection"},
                        )
                    )
                    continue

                await self._serve_connection(conn, peer)
        finally:
            for task in (accept_task, tick_task):
                if task is None:
                    continue
                if not task.done():
                    task.cancel()
                elif task is accept_task and not task.cancelled() and task.exception() is None:
                    task.result()[0].close()
