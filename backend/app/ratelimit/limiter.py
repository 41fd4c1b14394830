from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Optional

from app.ratelimit.clock import Clock, SystemClock
from app.ratelimit.store import AttemptRecord, AttemptStore, AttemptStoreError

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000


@dataclass(frozen=True)
class LimiterConfig:
    """Threshold policy for one limiter. Durations are in milliseconds."""

    max_attempts: int
    window_ms: int
    lockout_ms: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if self.lockout_ms is None:
            object.__setattr__(self, "lockout_ms", self.window_ms * 2)
        elif self.lockout_ms <= 0:
            raise ValueError("lockout_ms must be positive")

    @classmethod
    def from_minutes(
        cls, max_attempts: int, window_minutes: float, lockout_minutes: Optional[float] = None
    ) -> "LimiterConfig":
        return cls(
            max_attempts=max_attempts,
            window_ms=int(window_minutes * MINUTE_MS),
            lockout_ms=int(lockout_minutes * MINUTE_MS) if lockout_minutes is not None else None,
        )


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining_attempts: int
    reset_time: Optional[int] = None


@dataclass(frozen=True)
class RateLimitStatus:
    attempts: int
    remaining_attempts: int
    reset_time: Optional[int] = None


def composite_key(identifier: str, action: str) -> str:
    return f"{identifier}:{action}"


def split_key(key: str) -> tuple[str, str]:
    """Split a composite key back into (identifier, action)."""
    identifier, _, action = key.rpartition(":")
    return identifier, action


class RateLimiter:
    """Windowed attempt limiter with a fixed-duration lockout.

    Attempts for a composite key are counted over a trailing window. Once
    ``max_attempts`` have been made inside the window, the next attempt arms a
    lockout and every attempt is denied until it expires. Expiry resets the
    key completely.

    Calls are serialised per limiter instance. Separate processes sharing one
    store are not coordinated, so concurrent callers may be admitted one
    attempt past the threshold.
    """

    def __init__(
        self,
        config: LimiterConfig,
        store: AttemptStore,
        clock: Optional[Clock] = None,
        name: Optional[str] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.clock = clock or SystemClock()
        self.name = name
        self._lock = Lock()

    def _prune(self, record: AttemptRecord, now: int) -> AttemptRecord:
        """Drop an expired lockout and timestamps that left the window.

        A record under an active lockout is returned unchanged.
        """
        if record.lockout_until is not None:
            if now < record.lockout_until:
                return record.copy()
            return AttemptRecord()
        cutoff = now - self.config.window_ms
        return AttemptRecord(
            [t for t in record.timestamps if cutoff <= t <= now],
            record.lockout_until,
        )

    def _write(self, key: str, record: AttemptRecord) -> None:
        if record.is_empty():
            self.store.delete(key)
        else:
            self.store.set(key, record)

    def is_allowed(self, identifier: str, action: str) -> RateLimitDecision:
        """Decide whether an attempt may proceed. An allowed call counts as an attempt."""
        key = composite_key(identifier, action)
        with self._lock:
            now = self.clock.now()
            try:
                record = self.store.get(key) or AttemptRecord()

                # Checks during a lockout are never recorded and never extend it
                if record.lockout_until is not None and now < record.lockout_until:
                    return RateLimitDecision(False, 0, record.lockout_until)

                record = self._prune(record, now)
                if len(record.timestamps) >= self.config.max_attempts:
                    record.lockout_until = now + self.config.lockout_ms
                    self._write(key, record)
                    logger.warning(
                        "Rate limit exceeded for action %s; locked for %d ms",
                        action,
                        self.config.lockout_ms,
                    )
                    return RateLimitDecision(False, 0, record.lockout_until)

                record.timestamps.append(now)
                self._write(key, record)
            except AttemptStoreError:
                logger.exception("Rate limit store unavailable for action %s; denying", action)
                return RateLimitDecision(False, 0)

        return RateLimitDecision(True, self.config.max_attempts - len(record.timestamps))

    def status_for_record(
        self, record: Optional[AttemptRecord], now: Optional[int] = None
    ) -> RateLimitStatus:
        """Evaluate a stored record against the current time without touching the store."""
        if record is None:
            return RateLimitStatus(0, self.config.max_attempts)
        if now is None:
            now = self.clock.now()
        record = self._prune(record, now)
        if record.lockout_until is not None:
            return RateLimitStatus(len(record.timestamps), 0, record.lockout_until)
        attempts = len(record.timestamps)
        return RateLimitStatus(attempts, max(0, self.config.max_attempts - attempts))

    def get_status(self, identifier: str, action: str) -> RateLimitStatus:
        """Report attempts used and remaining. Never records an attempt."""
        key = composite_key(identifier, action)
        with self._lock:
            now = self.clock.now()
            try:
                stored = self.store.get(key)
                status = self.status_for_record(stored, now)
                if stored is not None:
                    pruned = self._prune(stored, now)
                    if pruned != stored:
                        self._write(key, pruned)
            except AttemptStoreError:
                logger.exception("Rate limit store unavailable for action %s", action)
                return RateLimitStatus(0, 0)
        return status

    def get_remaining_time(self, identifier: str, action: str) -> Optional[int]:
        """Milliseconds until the lockout for this key ends, or None if not locked out."""
        key = composite_key(identifier, action)
        with self._lock:
            try:
                record = self.store.get(key)
            except AttemptStoreError:
                logger.exception("Rate limit store unavailable for action %s", action)
                return None
        if record is None or record.lockout_until is None:
            return None
        now = self.clock.now()
        if now >= record.lockout_until:
            return None
        return record.lockout_until - now

    def reset(self, identifier: str, action: str) -> None:
        """Forget all attempts and any lockout for this key."""
        with self._lock:
            self.store.delete(composite_key(identifier, action))

    def is_expired(self, record: AttemptRecord) -> bool:
        return self._prune(record, self.clock.now()).is_empty()
