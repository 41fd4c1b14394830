from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import Text, create_engine, delete, select, type_coerce
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.base import Base
from app.models.rate_limit import RateLimitAttempt

logger = logging.getLogger(__name__)


class AttemptStoreError(Exception):
    """Raised when attempt records cannot be read or written."""


@dataclass
class AttemptRecord:
    """Attempt history for one composite key."""

    timestamps: list[int] = field(default_factory=list)
    lockout_until: Optional[int] = None

    def is_empty(self) -> bool:
        return not self.timestamps and self.lockout_until is None

    def copy(self) -> "AttemptRecord":
        return AttemptRecord(list(self.timestamps), self.lockout_until)


class AttemptStore:
    """Key-value persistence for attempt records, scoped to one namespace."""

    def __init__(self, namespace: str = "fuelmeter") -> None:
        self.namespace = namespace

    def get(self, key: str) -> Optional[AttemptRecord]:
        raise NotImplementedError

    def set(self, key: str, record: AttemptRecord) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def clear_all(self) -> int:
        """Remove every record in this namespace and return how many were removed."""
        raise NotImplementedError

    def list_all(self) -> list[tuple[str, AttemptRecord]]:
        raise NotImplementedError


class InMemoryAttemptStore(AttemptStore):
    """Process-local store; records are lost when the process exits."""

    def __init__(self, namespace: str = "fuelmeter") -> None:
        super().__init__(namespace)
        self._records: dict[str, AttemptRecord] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[AttemptRecord]:
        with self._lock:
            record = self._records.get(key)
            return record.copy() if record else None

    def set(self, key: str, record: AttemptRecord) -> None:
        with self._lock:
            self._records[key] = record.copy()

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
            return count

    def list_all(self) -> list[tuple[str, AttemptRecord]]:
        with self._lock:
            return [(key, record.copy()) for key, record in sorted(self._records.items())]


def _record_columns():
    # Fetch the JSON column as raw text so a bad payload fails one row, not the query
    return (
        RateLimitAttempt.key,
        type_coerce(RateLimitAttempt.timestamps, Text),
        RateLimitAttempt.lockout_until,
    )


def _decode_row(key: str, raw_timestamps, lockout_until) -> AttemptRecord:
    try:
        timestamps = json.loads(raw_timestamps) if isinstance(raw_timestamps, str) else raw_timestamps
    except ValueError as e:
        raise AttemptStoreError(f"Undecodable rate limit record for key {key!r}") from e
    if not isinstance(timestamps, list) or not all(
        isinstance(t, int) and not isinstance(t, bool) for t in timestamps
    ):
        raise AttemptStoreError(f"Corrupt rate limit record for key {key!r}")
    if lockout_until is not None and not isinstance(lockout_until, int):
        raise AttemptStoreError(f"Corrupt lockout marker for key {key!r}")
    return AttemptRecord(sorted(timestamps), lockout_until)


class SqlAttemptStore(AttemptStore):
    """Durable store backed by the rate_limit_attempts table."""

    def __init__(self, database_url: str, namespace: str = "fuelmeter") -> None:
        super().__init__(namespace)
        url = make_url(database_url)
        engine_kwargs: dict = {}
        try:
            if url.get_backend_name() == "sqlite":
                engine_kwargs["connect_args"] = {"check_same_thread": False}
                if url.database in (None, "", ":memory:"):
                    engine_kwargs["poolclass"] = StaticPool
                else:
                    Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            else:
                engine_kwargs["pool_pre_ping"] = True

            self.engine = create_engine(url, **engine_kwargs)
            Base.metadata.create_all(self.engine, tables=[RateLimitAttempt.__table__])
        except (SQLAlchemyError, OSError) as e:
            raise AttemptStoreError(f"Unable to open rate limit store: {e}") from e
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def get(self, key: str) -> Optional[AttemptRecord]:
        try:
            with self._session_factory() as session:
                row = session.execute(
                    select(*_record_columns()).where(
                        RateLimitAttempt.namespace == self.namespace,
                        RateLimitAttempt.key == key,
                    )
                ).first()
        except SQLAlchemyError as e:
            raise AttemptStoreError(f"Failed to read rate limit record {key!r}") from e
        if row is None:
            return None
        return _decode_row(*row)

    def set(self, key: str, record: AttemptRecord) -> None:
        try:
            with self._session_factory.begin() as session:
                session.merge(
                    RateLimitAttempt(
                        namespace=self.namespace,
                        key=key,
                        timestamps=list(record.timestamps),
                        lockout_until=record.lockout_until,
                    )
                )
        except SQLAlchemyError as e:
            raise AttemptStoreError(f"Failed to write rate limit record {key!r}") from e

    def delete(self, key: str) -> None:
        try:
            with self._session_factory.begin() as session:
                session.execute(
                    delete(RateLimitAttempt).where(
                        RateLimitAttempt.namespace == self.namespace,
                        RateLimitAttempt.key == key,
                    )
                )
        except SQLAlchemyError as e:
            raise AttemptStoreError(f"Failed to delete rate limit record {key!r}") from e

    def clear_all(self) -> int:
        try:
            with self._session_factory.begin() as session:
                result = session.execute(
                    delete(RateLimitAttempt).where(RateLimitAttempt.namespace == self.namespace)
                )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise AttemptStoreError("Failed to clear rate limit records") from e

    def list_all(self) -> list[tuple[str, AttemptRecord]]:
        try:
            with self._session_factory() as session:
                rows = session.execute(
                    select(*_record_columns())
                    .where(RateLimitAttempt.namespace == self.namespace)
                    .order_by(RateLimitAttempt.key)
                ).all()
        except SQLAlchemyError as e:
            raise AttemptStoreError("Failed to list rate limit records") from e

        records = []
        for key, raw_timestamps, lockout_until in rows:
            try:
                records.append((key, _decode_row(key, raw_timestamps, lockout_until)))
            except AttemptStoreError:
                logger.warning("Skipping corrupt rate limit record %s", key)
        return records

    def dispose(self) -> None:
        self.engine.dispose()
