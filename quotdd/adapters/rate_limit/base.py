"""Rate limiter interface used by the connection handler."""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractRateLimiter(ABC):
    """Interface for per-address admission control."""

    @abstractmethod
    def accept(self, key: str) -> bool:
        """Record a request from ``key`` and decide whether to admit it.

        Args:
            key: Source address of the request.

        Returns:
            True if the request may proceed.
        """
        raise NotImplementedError

    @abstractmethod
    def decay(self) -> None:
        """Age accumulated history; called once per decay period."""
        raise NotImplementedError
