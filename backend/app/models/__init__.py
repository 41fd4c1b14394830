from __future__ import annotations

from app.models.rate_limit import RateLimitAttempt

__all__ = [
    "RateLimitAttempt",
]
