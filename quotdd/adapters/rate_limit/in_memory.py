"""In-memory decaying counter rate limiter.

Notes:
- Per-process only: state is lost on restart.
- Not thread-safe: the service loop is the only mutator, on a single thread.
"""

from __future__ import annotations

import logging

from quotdd.adapters.rate_limit.base import AbstractRateLimiter

logger = logging.getLogger(__name__)


class InMemoryDecayingRateLimiter(AbstractRateLimiter):
    """Rate limiter counting request attempts per address.

    Every attempt increments the address counter, admitted or not, and a
    request is admitted while the counter (before increment) is below
    ``threshold``. A periodic ``decay()`` subtracts ``decay`` from every
    counter and forgets addresses that reach zero, so memory only holds
    recently active senders.

    With ``threshold == decay`` an address that used exactly its allowance in
    one period starts the next one clean, while an address that kept knocking
    carries the excess forward.
    """

    def __init__(self, *, threshold: int = 10, decay: int = 10) -> None:
        """Initialize the limiter.

        Args:
            threshold: Attempts admitted before rejecting.
            decay: Amount removed from every counter per decay tick.

        Raises:
            ValueError: If threshold or decay are invalid.
        """
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        if decay < 1:
            raise ValueError("decay must be >= 1")

        self._threshold = threshold
        self._decay = decay
        self._counts: dict[str, int] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryDecayingRateLimiter(threshold={self._threshold}, "
            f"decay={self._decay}, tracked={len(self._counts)})"
        )

    def accept(self, key: str) -> bool:
        """Count one attempt from ``key`` and return the admission decision.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        previous = self._counts.get(key, 0)
        self._counts[key] = previous + 1
        return previous < self._threshold

    def decay(self) -> None:
        """Subtract the decay amount from every counter and prune zeros."""
        self._counts = {
            key: count - self._decay
            for key, count in self._counts.items()
            if count > self._decay
        }
        logger.debug("rate_limit.decayed", extra={"tracked": len(self._counts)})

    def count(self, key: str) -> int:
        """Return the current counter for ``key`` (0 when untracked)."""
        return self._counts.get(key, 0)

    def stats(self) -> dict[str, int]:
        """Return limiter configuration and the number of tracked addresses."""
        return {
            "threshold": self._threshold,
            "decay": self._decay,
            "tracked": len(self._counts),
        }
