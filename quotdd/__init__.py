"""Quote of the day TCP service with per-address rate limiting."""

__version__ = "0.1.0"
