from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from app.ratelimit.clock import Clock, SystemClock
from app.ratelimit.limiter import LimiterConfig, RateLimiter, split_key
from app.ratelimit.store import AttemptStore

logger = logging.getLogger(__name__)

LOGIN = "login"
FORGOT_PASSWORD = "forgot-password"
RESEND_VERIFICATION = "resend-verification"


class UnknownActionError(KeyError):
    """Raised when no limiter is registered for an action."""


class AdminInterfaceDisabled(RuntimeError):
    """Raised when an administrative operation is called on a registry built without it."""


@dataclass(frozen=True)
class RateLimitStatusEntry:
    key: str
    action: str
    attempts: int
    remaining_attempts: Optional[int]
    reset_time: Optional[int] = None
    time_remaining: int = 0


class LimiterRegistry:
    """One RateLimiter per protected action, sharing a store and a clock."""

    def __init__(
        self,
        store: AttemptStore,
        policies: Mapping[str, LimiterConfig],
        clock: Optional[Clock] = None,
        admin_enabled: bool = False,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.admin_enabled = admin_enabled
        self._limiters = {
            action: RateLimiter(config, store, self.clock, name=action)
            for action, config in policies.items()
        }

    @classmethod
    def from_settings(
        cls,
        settings,
        store: AttemptStore,
        clock: Optional[Clock] = None,
    ) -> "LimiterRegistry":
        policies = {
            LOGIN: LimiterConfig.from_minutes(
                settings.login_max_attempts,
                settings.login_window_minutes,
                settings.login_lockout_minutes,
            ),
            FORGOT_PASSWORD: LimiterConfig.from_minutes(
                settings.forgot_password_max_attempts,
                settings.forgot_password_window_minutes,
                settings.forgot_password_lockout_minutes,
            ),
            RESEND_VERIFICATION: LimiterConfig.from_minutes(
                settings.resend_verification_max_attempts,
                settings.resend_verification_window_minutes,
                settings.resend_verification_lockout_minutes,
            ),
        }
        return cls(store, policies, clock, admin_enabled=settings.admin_interface_enabled)

    @property
    def actions(self) -> list[str]:
        return list(self._limiters)

    def get(self, action: str) -> RateLimiter:
        try:
            return self._limiters[action]
        except KeyError:
            raise UnknownActionError(action) from None

    @property
    def login(self) -> RateLimiter:
        return self.get(LOGIN)

    @property
    def forgot_password(self) -> RateLimiter:
        return self.get(FORGOT_PASSWORD)

    @property
    def resend_verification(self) -> RateLimiter:
        return self.get(RESEND_VERIFICATION)

    def _require_admin(self) -> None:
        if not self.admin_enabled:
            raise AdminInterfaceDisabled("Rate limit admin interface is disabled")

    def clear_all_rate_limits(self) -> int:
        self._require_admin()
        cleared = self.store.clear_all()
        logger.info("Cleared %d rate limit entries", cleared)
        return cleared

    def get_all_rate_limit_statuses(self) -> list[RateLimitStatusEntry]:
        self._require_admin()
        now = self.clock.now()
        entries = []
        for key, record in self.store.list_all():
            _, action = split_key(key)
            limiter = self._limiters.get(action)
            if limiter is not None:
                status = limiter.status_for_record(record, now)
                attempts = status.attempts
                remaining: Optional[int] = status.remaining_attempts
                reset_time = status.reset_time
            else:
                attempts = len(record.timestamps)
                remaining = None
                reset_time = record.lockout_until
                if reset_time is not None and reset_time <= now:
                    reset_time = None
            entries.append(
                RateLimitStatusEntry(
                    key=key,
                    action=action,
                    attempts=attempts,
                    remaining_attempts=remaining,
                    reset_time=reset_time,
                    time_remaining=max(0, reset_time - now) if reset_time else 0,
                )
            )
        return entries

    def purge_expired(self) -> int:
        """Delete records whose lockout and window have both lapsed."""
        self._require_admin()
        purged = 0
        for key, record in self.store.list_all():
            limiter = self._limiters.get(split_key(key)[1])
            if limiter is not None and limiter.is_expired(record):
                self.store.delete(key)
                purged += 1
        if purged:
            logger.info("Purged %d expired rate limit entries", purged)
        return purged
