from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.main import create_app
from app.ratelimit.clock import ManualClock
from app.ratelimit.limiter import LimiterConfig, RateLimiter
from app.ratelimit.registry import (
    FORGOT_PASSWORD,
    LOGIN,
    RESEND_VERIFICATION,
    LimiterRegistry,
)
from app.ratelimit.store import InMemoryAttemptStore, SqlAttemptStore
from app.services.identity import PasswordIdentityProvider

MINUTE = 60 * 1000

TEST_PASSWORD = "SecurePass123!"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def memory_store() -> InMemoryAttemptStore:
    return InMemoryAttemptStore()


@pytest.fixture
def sql_store(tmp_path) -> SqlAttemptStore:
    """SQLite-backed store in a temporary directory."""
    store = SqlAttemptStore(f"sqlite:///{tmp_path / 'rate_limits.db'}")
    yield store
    store.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, memory_store, tmp_path):
    """Run a test once against each store implementation."""
    if request.param == "memory":
        yield memory_store
        return
    store = SqlAttemptStore(f"sqlite:///{tmp_path / 'param.db'}")
    yield store
    store.dispose()


@pytest.fixture
def limiter(store, clock) -> RateLimiter:
    """3 attempts per 15 minutes, 30 minute lockout."""
    return RateLimiter(
        LimiterConfig(max_attempts=3, window_ms=15 * MINUTE, lockout_ms=30 * MINUTE),
        store,
        clock,
    )


def build_registry(store, clock, admin_enabled: bool = True) -> LimiterRegistry:
    return LimiterRegistry(
        store,
        {
            LOGIN: LimiterConfig.from_minutes(5, 15, 30),
            FORGOT_PASSWORD: LimiterConfig.from_minutes(3, 15, 30),
            RESEND_VERIFICATION: LimiterConfig.from_minutes(5, 10, 20),
        },
        clock,
        admin_enabled=admin_enabled,
    )


@pytest.fixture
def registry(memory_store, clock) -> LimiterRegistry:
    return build_registry(memory_store, clock)


@pytest.fixture
def identity() -> PasswordIdentityProvider:
    provider = PasswordIdentityProvider(bcrypt_rounds=4)
    provider.add_account("driver@example.com", TEST_PASSWORD, is_verified=True)
    provider.add_account("pending@example.com", TEST_PASSWORD)
    return provider


@pytest_asyncio.fixture
async def client(registry, identity) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP test client wired to the test registry."""
    app = create_app(rate_limits=registry, identity_provider=identity)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
