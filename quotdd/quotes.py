"""Quote corpus served to admitted peers."""

from __future__ import annotations

from typing import Iterable

from quotdd.core.errors import ConfigurationAppError

QUOTES: tuple[str, ...] = (
    "Quickness is the essence of the war. ~ Sun Tsu",
    "Pretend inferiority and encourage his arrogance. ~ Sun Tsu",
    "meow. ~ wffl",
)


def ensure_quotes(quotes: Iterable[str]) -> tuple[str, ...]:
    """Freeze the corpus, refusing to start without anything to serve.

    Raises:
        ConfigurationAppError: If no quotes were provided.
    """

    frozen = tuple(quotes)
    if not frozen:
        raise ConfigurationAppError(
            code="empty_quotes",
            message="Quotes are empty",
            details={"hint": "provide at least one quote"},
        )
    return frozen
