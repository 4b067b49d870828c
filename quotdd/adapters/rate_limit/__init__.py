"""Rate limiting adapters.

The service loop depends on the AbstractRateLimiter interface so the
admission policy can be replaced without touching connection handling.
"""
