from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class RateLimitStatusResponse(BaseModel):
    action: str
    attempts: int
    remaining_attempts: int
    reset_time: Optional[int] = None
    retry_after_ms: Optional[int] = None
    retry_after_text: Optional[str] = None


class RateLimitEntryResponse(BaseModel):
    key: str
    action: str
    attempts: int
    remaining_attempts: Optional[int]
    reset_time: Optional[int] = None
    time_remaining: int = 0

    model_config = {"from_attributes": True}


class ClearResponse(BaseModel):
    cleared: int


class PurgeResponse(BaseModel):
    purged: int
