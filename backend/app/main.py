from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.config import settings
from app.ratelimit.registry import LimiterRegistry
from app.ratelimit.store import SqlAttemptStore
from app.services.identity import IdentityProvider, PasswordIdentityProvider

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the limiter registry and identity provider unless they were injected."""
    store = None
    if getattr(app.state, "rate_limits", None) is None:
        store = SqlAttemptStore(settings.rate_limit_database_url, settings.rate_limit_namespace)
        app.state.rate_limits = LimiterRegistry.from_settings(settings, store)
        logger.info(
            "Rate limiting enabled for %s (admin interface %s)",
            ", ".join(app.state.rate_limits.actions),
            "on" if app.state.rate_limits.admin_enabled else "off",
        )
    if getattr(app.state, "identity_provider", None) is None:
        app.state.identity_provider = PasswordIdentityProvider()
    yield
    if store is not None:
        store.dispose()


def create_app(
    rate_limits: Optional[LimiterRegistry] = None,
    identity_provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="FuelMeter Auth API",
        description="Rate-limited authentication endpoints for FuelMeter",
        version="0.1.0",
        docs_url="/api/docs" if settings.app_env == "development" else None,
        redoc_url="/api/redoc" if settings.app_env == "development" else None,
        lifespan=lifespan,
    )
    app.state.rate_limits = rate_limits
    app.state.identity_provider = identity_provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.get("/api/v1/health")
    async def health_check():
        return {"status": "healthy", "version": "0.1.0"}

    return app


app = create_app()
