from __future__ import annotations

from fastapi import Request

from app.ratelimit.registry import LimiterRegistry
from app.services.identity import IdentityProvider


def get_rate_limits(request: Request) -> LimiterRegistry:
    """Provide the limiter registry built at startup."""
    return request.app.state.rate_limits


def get_identity_provider(request: Request) -> IdentityProvider:
    return request.app.state.identity_provider
