from __future__ import annotations

import threading

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

from app.config import settings
from app.main import create_app
from app.middleware.auth import ALGORITHM
from app.ratelimit.store import InMemoryAttemptStore
from tests.conftest import MINUTE, TEST_PASSWORD, build_registry


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Health check endpoint returns 200."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, identity):
    """Login with valid credentials returns a token and the attempts left."""
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "driver@example.com", "password": TEST_PASSWORD},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["remaining_attempts"] == 4
    payload = jwt.decode(data["access_token"], settings.jwt_secret_key, algorithms=[ALGORITHM])
    assert payload["sub"] == identity.accounts["driver@example.com"].user_id


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient):
    """Login with wrong password returns 401."""
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "driver@example.com", "password": "wrongpassword"},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_locked_after_repeated_attempts(client: AsyncClient, clock):
    """The sixth login attempt inside the window is refused for 30 minutes."""
    for _ in range(5):
        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "driver@example.com", "password": "wrongpassword"},
        )
        assert response.status_code == 401

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "driver@example.com", "password": TEST_PASSWORD},
    )
    assert response.status_code == 429
    assert response.json()["detail"] == "Too many attempts. Please try again in 30 minutes."
    assert response.headers["Retry-After"] == str(30 * 60)

    clock.advance(30 * MINUTE)
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "driver@example.com", "password": TEST_PASSWORD},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_login_limit_is_per_email(client: AsyncClient):
    for _ in range(6):
        await client.post(
            "/api/v1/auth/login",
            json={"email": "driver@example.com", "password": "wrongpassword"},
        )

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "pending@example.com", "password": TEST_PASSWORD},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_email_is_normalised_for_limiting(client: AsyncClient):
    for _ in range(5):
        await client.post(
            "/api/v1/auth/login",
            json={"email": "Driver@Example.com", "password": "wrongpassword"},
        )
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "driver@example.com", "password": TEST_PASSWORD},
    )
    assert response.status_code == 429


@pytest.mark.asyncio
async def test_forgot_password_queues_mail(client: AsyncClient, identity):
    response = await client.post(
        "/api/v1/auth/forgot-password", json={"email": "driver@example.com"}
    )
    assert response.status_code == 202
    assert response.json()["remaining_attempts"] == 2
    assert [(m.kind, m.email) for m in identity.outbox] == [
        ("password-reset", "driver@example.com")
    ]


@pytest.mark.asyncio
async def test_forgot_password_unknown_email_looks_the_same(client: AsyncClient, identity):
    response = await client.post(
        "/api/v1/auth/forgot-password", json={"email": "ghost@example.com"}
    )
    assert response.status_code == 202
    assert identity.outbox == []


@pytest.mark.asyncio
async def test_forgot_password_rate_limited(client: AsyncClient, identity):
    for _ in range(3):
        response = await client.post(
            "/api/v1/auth/forgot-password", json={"email": "driver@example.com"}
        )
        assert response.status_code == 202

    response = await client.post(
        "/api/v1/auth/forgot-password", json={"email": "driver@example.com"}
    )
    assert response.status_code == 429
    assert len(identity.outbox) == 3


@pytest.mark.asyncio
async def test_resend_verification(client: AsyncClient, identity):
    response = await client.post(
        "/api/v1/auth/resend-verification", json={"email": "pending@example.com"}
    )
    assert response.status_code == 202
    assert response.json()["remaining_attempts"] == 4
    assert [(m.kind, m.email) for m in identity.outbox] == [
        ("verification", "pending@example.com")
    ]


@pytest.mark.asyncio
async def test_resend_verification_rate_limited(client: AsyncClient, clock):
    for _ in range(5):
        await client.post(
            "/api/v1/auth/resend-verification", json={"email": "pending@example.com"}
        )
    response = await client.post(
        "/api/v1/auth/resend-verification", json={"email": "pending@example.com"}
    )
    assert response.status_code == 429
    assert response.json()["detail"] == "Too many attempts. Please try again in 20 minutes."


@pytest.mark.asyncio
async def test_invalid_email_rejected(client: AsyncClient):
    response = await client.post("/api/v1/auth/forgot-password", json={"email": "not-an-email"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_rate_limit_status(client: AsyncClient):
    for _ in range(2):
        await client.post("/api/v1/auth/forgot-password", json={"email": "driver@example.com"})

    first = await client.get(
        "/api/v1/auth/rate-limit/forgot-password", params={"email": "driver@example.com"}
    )
    second = await client.get(
        "/api/v1/auth/rate-limit/forgot-password", params={"email": "driver@example.com"}
    )
    assert first.status_code == 200
    assert first.json() == second.json()
    data = first.json()
    assert data["attempts"] == 2
    assert data["remaining_attempts"] == 1
    assert data["retry_after_ms"] is None


@pytest.mark.asyncio
async def test_rate_limit_status_while_locked(client: AsyncClient, clock):
    for _ in range(4):
        await client.post("/api/v1/auth/forgot-password", json={"email": "driver@example.com"})
    clock.advance(4 * MINUTE)

    response = await client.get(
        "/api/v1/auth/rate-limit/forgot-password", params={"email": "driver@example.com"}
    )
    data = response.json()
    assert data["remaining_attempts"] == 0
    assert data["retry_after_ms"] == 26 * MINUTE
    assert data["retry_after_text"] == "26 minutes"
    assert data["reset_time"] == clock.now() + 26 * MINUTE


@pytest.mark.asyncio
async def test_rate_limit_status_without_email_uses_client_fingerprint(client: AsyncClient):
    response = await client.get(
        "/api/v1/auth/rate-limit/login", headers={"User-Agent": "pytest-client"}
    )
    assert response.status_code == 200
    assert response.json()["attempts"] == 0
    assert response.json()["remaining_attempts"] == 5


@pytest.mark.asyncio
async def test_rate_limit_status_unknown_action(client: AsyncClient):
    response = await client.get("/api/v1/auth/rate-limit/delete-account")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_list_and_clear(client: AsyncClient):
    for _ in range(4):
        await client.post("/api/v1/auth/forgot-password", json={"email": "driver@example.com"})
    await client.post(
        "/api/v1/auth/login", json={"email": "driver@example.com", "password": TEST_PASSWORD}
    )

    response = await client.get("/api/v1/admin/rate-limits")
    assert response.status_code == 200
    entries = {entry["key"]: entry for entry in response.json()}
    assert entries["driver@example.com:forgot-password"]["time_remaining"] == 30 * MINUTE
    assert entries["driver@example.com:login"]["remaining_attempts"] == 4

    response = await client.delete("/api/v1/admin/rate-limits")
    assert response.json() == {"cleared": 2}

    response = await client.post(
        "/api/v1/auth/forgot-password", json={"email": "driver@example.com"}
    )
    assert response.status_code == 202


@pytest.mark.asyncio
async def test_admin_purge(client: AsyncClient, clock):
    await client.post("/api/v1/auth/forgot-password", json={"email": "driver@example.com"})
    clock.advance(16 * MINUTE)

    response = await client.post("/api/v1/admin/rate-limits/purge")
    assert response.json() == {"purged": 1}


@pytest.mark.asyncio
async def test_admin_disabled_returns_404(memory_store, clock, identity):
    app = create_app(
        rate_limits=build_registry(memory_store, clock, admin_enabled=False),
        identity_provider=identity,
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        assert (await ac.get("/api/v1/admin/rate-limits")).status_code == 404
        assert (await ac.delete("/api/v1/admin/rate-limits")).status_code == 404
        assert (await ac.post("/api/v1/admin/rate-limits/purge")).status_code == 404


class ThreadRecordingStore(InMemoryAttemptStore):
    """Remembers which threads read from the store."""

    def __init__(self) -> None:
        super().__init__()
        self.reader_threads: set[int] = set()

    def get(self, key):
        self.reader_threads.add(threading.get_ident())
        return super().get(key)


@pytest.mark.asyncio
async def test_store_access_stays_off_the_event_loop(clock, identity):
    store = ThreadRecordingStore()
    app = create_app(rate_limits=build_registry(store, clock), identity_provider=identity)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        await ac.post(
            "/api/v1/auth/login",
            json={"email": "driver@example.com", "password": TEST_PASSWORD},
        )
        await ac.post("/api/v1/auth/forgot-password", json={"email": "driver@example.com"})
        await ac.post("/api/v1/auth/resend-verification", json={"email": "pending@example.com"})
        await ac.get("/api/v1/auth/rate-limit/login", params={"email": "driver@example.com"})
        response = await ac.get("/api/v1/admin/rate-limits")
        assert response.status_code == 200

    assert store.reader_threads
    assert threading.get_ident() not in store.reader_threads
