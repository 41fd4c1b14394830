from __future__ import annotations

from app.ratelimit.clock import Clock, ManualClock, SystemClock
from app.ratelimit.formatting import (
    build_status_table,
    format_remaining_time,
    too_many_attempts_message,
)
from app.ratelimit.identifier import (
    client_identifier_from_request,
    resolve_client_identifier,
    select_identifier,
)
from app.ratelimit.limiter import (
    LimiterConfig,
    RateLimitDecision,
    RateLimiter,
    RateLimitStatus,
    composite_key,
)
from app.ratelimit.registry import (
    FORGOT_PASSWORD,
    LOGIN,
    RESEND_VERIFICATION,
    AdminInterfaceDisabled,
    LimiterRegistry,
    RateLimitStatusEntry,
    UnknownActionError,
)
from app.ratelimit.store import (
    AttemptRecord,
    AttemptStore,
    AttemptStoreError,
    InMemoryAttemptStore,
    SqlAttemptStore,
)

__all__ = [
    "AdminInterfaceDisabled",
    "AttemptRecord",
    "AttemptStore",
    "AttemptStoreError",
    "Clock",
    "FORGOT_PASSWORD",
    "InMemoryAttemptStore",
    "LOGIN",
    "LimiterConfig",
    "LimiterRegistry",
    "ManualClock",
    "RESEND_VERIFICATION",
    "RateLimitDecision",
    "RateLimitStatus",
    "RateLimitStatusEntry",
    "RateLimiter",
    "SqlAttemptStore",
    "SystemClock",
    "UnknownActionError",
    "build_status_table",
    "client_identifier_from_request",
    "composite_key",
    "format_remaining_time",
    "resolve_client_identifier",
    "select_identifier",
    "too_many_attempts_message",
]
