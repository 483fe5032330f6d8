"""Security helpers — intake throttling."""

from src.security.rate_limiter import intake_limiter

__all__ = ["intake_limiter"]
