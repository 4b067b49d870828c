"""End-to-end tests for the service loop over real loopback sockets."""

import asyncio
import contextlib
import socket

import pytest

from quotdd.core.errors import BindAppError, ConfigurationAppError, ConnectionAppError
from quotdd.quotes import QUOTES
from quotdd.services import quote_service
from quotdd.services.quote_service import QuoteService

QUOTE_LINES = {quote.encode("utf-8") + b"\n" for quote in QUOTES}


async def _fetch(host: str, port: int) -> bytes:
    """Connect without sending anything and read until the server closes."""
    reader, writer = await asyncio.open_connection(host, port)
    try:
        return await asyncio.wait_for(reader.read(), timeout=5)
    finally:
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()


@contextlib.asynccontextmanager
async def running(service: QuoteService):
    host, port = service.bind()
    task = asyncio.create_task(service.serve_forever())
    try:
        yield host, port, task
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        service.close()


class TestQuoteService:
    @pytest.mark.asyncio
    async def test_bare_connection_receives_quote_and_eof(self, make_settings):
        service = QuoteService(make_settings(), QUOTES)

        async with running(service) as (host, port, _):
            data = await _fetch(host, port)

        assert data in QUOTE_LINES
        assert data.count(b"\n") == 1

    @pytest.mark.asyncio
    async def test_eleventh_rapid_connection_gets_nothing(self, make_settings):
        service = QuoteService(make_settings(), QUOTES)

        async with running(service) as (host, port, _):
            results = await asyncio.gather(*(_fetch(host, port) for _ in range(11)))

        served = [data for data in results if data]
        assert len(served) == 10
        assert all(data in QUOTE_LINES for data in served)
        assert results.count(b"") == 1
        assert service.limiter.count("127.0.0.1") == 11

    @pytest.mark.asyncio
    async def test_decay_tick_readmits_address(self, make_settings):
        service = QuoteService(
            make_settings(threshold=2, decay=2, period_seconds=0.5), QUOTES
        )

        async with running(service) as (host, port, _):
            first = [await _fetch(host, port) for _ in range(3)]
            assert [bool(data) for data in first] == [True, True, False]

            await asyncio.sleep(1.2)

            assert service.limiter.count("127.0.0.1") == 0
            assert await _fetch(host, port) in QUOTE_LINES

    @pytest.mark.asyncio
    async def test_connection_error_stops_service_by_default(self, make_settings, monkeypatch):
        async def failing_handler(conn, peer_host, **kwargs):
            conn.close()
            raise ConnectionAppError(code="write_failed", message="writing quote: boom")

        monkeypatch.setattr(quote_service, "handle_connection", failing_handler)
        service = QuoteService(make_settings(), QUOTES)

        async with running(service) as (host, port, task):
            await _fetch(host, port)
            with pytest.raises(ConnectionAppError, match="writing quote"):
                await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_connection_error_is_logged_when_policy_is_log(
        self, make_settings, monkeypatch, caplog
    ):
        real_handler = quote_service.handle_connection
        calls = []

        async def flaky_handler(conn, peer_host, **kwargs):
            calls.append(peer_host)
            if len(calls) == 1:
                conn.close()
                raise ConnectionAppError(
                    code="write_failed",
                    message="writing quote: boom",
                    details={"step": "writing quote", "peer": peer_host},
                )
            return await real_handler(conn, peer_host, **kwargs)

        monkeypatch.setattr(quote_service, "handle_connection", flaky_handler)
        service = QuoteService(make_settings(connection_error_policy="log"), QUOTES)

        async with running(service) as (host, port, task):
            assert await _fetch(host, port) == b""
            assert await _fetch(host, port) in QUOTE_LINES
            assert not task.done()

        assert "connection.error" in caplog.text

    @pytest.mark.asyncio
    async def test_accept_error_stops_service_by_default(self, make_settings, monkeypatch):
        loop = asyncio.get_running_loop()

        async def failing_accept(sock):
            raise OSError(24, "Too many open files")

        monkeypatch.setattr(loop, "sock_accept", failing_accept)
        service = QuoteService(make_settings(), QUOTES)

        async with running(service) as (_, _, task):
            with pytest.raises(ConnectionAppError) as exc_info:
                await asyncio.wait_for(task, timeout=5)

        assert exc_info.value.code == "accept_failed"
        assert exc_info.value.details == {"step": "accepting connection"}

    @pytest.mark.asyncio
    async def test_accept_error_is_logged_when_policy_is_log(
        self, make_settings, monkeypatch, caplog
    ):
        loop = asyncio.get_running_loop()
        real_accept = loop.sock_accept
        calls = []

        async def flaky_accept(sock):
            calls.append(sock)
            if len(calls) == 1:
                raise OSError(24, "Too many open files")
            return await real_accept(sock)

        monkeypatch.setattr(loop, "sock_accept", flaky_accept)
        service = QuoteService(make_settings(connection_error_policy="log"), QUOTES)

        async with running(service) as (host, port, task):
            assert await _fetch(host, port) in QUOTE_LINES
            assert not task.done()

        assert len(calls) >= 2
        errors = [r for r in caplog.records if r.getMessage() == "connection.error"]
        assert [r.error_code for r in errors] == ["accept_failed"]

    def test_bind_conflict_raises_bind_error(self, make_settings):
        occupied = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        port = occupied.getsockname()[1]
        service = QuoteService(make_settings(port=port), QUOTES)

        try:
            with pytest.raises(BindAppError) as exc_info:
                service.bind()
        finally:
            occupied.close()

        assert exc_info.value.message.startswith(f"binding on port {port}")
        assert exc_info.value.details["port"] == port

    def test_empty_corpus_is_rejected(self, make_settings):
        with pytest.raises(ConfigurationAppError, match="Quotes are empty"):
            QuoteService(make_settings(), [])

    @pytest.mark.asyncio
    async def test_serve_requires_bind(self, make_settings):
        service = QuoteService(make_settings(), QUOTES)

        with pytest.raises(RuntimeError):
            await service.serve_forever()
