from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.dependencies import get_rate_limits
from app.ratelimit.formatting import build_status_table
from app.ratelimit.registry import LimiterRegistry
from app.schemas.rate_limit import ClearResponse, PurgeResponse, RateLimitEntryResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/rate-limits", tags=["admin"])


def require_admin_interface(
    rate_limits: LimiterRegistry = Depends(get_rate_limits),
) -> LimiterRegistry:
    # Report a disabled interface as absent
    if not rate_limits.admin_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    return rate_limits


@router.get("", response_model=list[RateLimitEntryResponse])
def list_rate_limits(
    rate_limits: LimiterRegistry = Depends(require_admin_interface),
) -> list[RateLimitEntryResponse]:
    """List every stored limiter state."""
    entries = rate_limits.get_all_rate_limit_statuses()
    if entries:
        logger.debug("Rate limit states:\n%s", build_status_table(entries))
    return [RateLimitEntryResponse.model_validate(entry) for entry in entries]


@router.delete("", response_model=ClearResponse)
def clear_rate_limits(
    rate_limits: LimiterRegistry = Depends(require_admin_interface),
) -> ClearResponse:
    return ClearResponse(cleared=rate_limits.clear_all_rate_limits())


@router.post("/purge", response_model=PurgeResponse)
def purge_rate_limits(
    rate_limits: LimiterRegistry = Depends(require_admin_interface),
) -> PurgeResponse:
    """Remove records that no longer affect any decision."""
    return PurgeResponse(purged=rate_limits.purge_expired())
