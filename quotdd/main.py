"""Process entry point: load settings, bind, and serve until stopped."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from quotdd.core.config import load_settings
from quotdd.core.errors import AppError
from quotdd.core.logging import configure_logging
from quotdd.quotes import QUOTES
from quotdd.services.quote_service import QuoteService

logger = logging.getLogger("quotdd")


def _report(exc: AppError) -> None:
    logger.error(
        "error: %s",
        exc.message,
        extra={"error_code": exc.code, "details": exc.details or {}},
    )


def main(quotes: Sequence[str] = QUOTES) -> int:
    """Run the service.

    Returns:
        Process exit status: 0 when interrupted, 1 on any fatal error.
    """

    try:
        settings = load_settings()
    except AppError as exc:
        # Logging is not configured yet; fall back to the default handler.
        logging.basicConfig(format="%(levelname)s %(name)s %(message)s")
        _report(exc)
        return 1

    configure_logging(settings.log)

    try:
        service = QuoteService(settings, quotes)
        service.bind()
    except AppError as exc:
        _report(exc)
        return 1

    try:
        asyncio.run(service.serve_forever())
    except AppError as exc:
        _report(exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down")
        return 0
    finally:
        service.close()

    return 0
