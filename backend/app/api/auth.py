from __future__ import annotations

import asyncio
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.dependencies import get_identity_provider, get_rate_limits
from app.middleware.auth import create_access_token
from app.ratelimit.formatting import format_remaining_time, too_many_attempts_message
from app.ratelimit.identifier import client_identifier_from_request, select_identifier
from app.ratelimit.limiter import RateLimitDecision, RateLimiter
from app.ratelimit.registry import (
    FORGOT_PASSWORD,
    LOGIN,
    RESEND_VERIFICATION,
    LimiterRegistry,
    UnknownActionError,
)
from app.schemas.auth import EmailRequest, LoginRequest, MessageResponse, TokenResponse
from app.schemas.rate_limit import RateLimitStatusResponse
from app.services.identity import IdentityProvider, InvalidCredentials

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def enforce_rate_limit(limiter: RateLimiter, identifier: str, action: str) -> RateLimitDecision:
    """Count an attempt, raising 429 with the remaining lockout if it is denied."""
    decision = limiter.is_allowed(identifier, action)
    if decision.allowed:
        return decision

    remaining_ms = limiter.get_remaining_time(identifier, action)
    headers = {}
    if remaining_ms:
        headers["Retry-After"] = str(math.ceil(remaining_ms / 1000))
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=too_many_attempts_message(remaining_ms),
        headers=headers or None,
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    rate_limits: LimiterRegistry = Depends(get_rate_limits),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> TokenResponse:
    """Authenticate and receive a JWT access token."""
    identifier = select_identifier(body.email, client_identifier_from_request(request))
    decision = await asyncio.to_thread(enforce_rate_limit, rate_limits.login, identifier, LOGIN)

    try:
        user_id = await identity.sign_in(body.email, body.password)
    except InvalidCredentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info("User %s signed in", user_id)
    return TokenResponse(
        access_token=create_access_token(user_id),
        remaining_attempts=decision.remaining_attempts,
    )


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def forgot_password(
    body: EmailRequest,
    request: Request,
    rate_limits: LimiterRegistry = Depends(get_rate_limits),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> MessageResponse:
    """Send a password reset link."""
    identifier = select_identifier(body.email, client_identifier_from_request(request))
    decision = await asyncio.to_thread(
        enforce_rate_limit, rate_limits.forgot_password, identifier, FORGOT_PASSWORD
    )

    await identity.send_password_reset(body.email)
    return MessageResponse(
        message="If an account exists for this email, a password reset link has been sent.",
        remaining_attempts=decision.remaining_attempts,
    )


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def resend_verification(
    body: EmailRequest,
    request: Request,
    rate_limits: LimiterRegistry = Depends(get_rate_limits),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> MessageResponse:
    """Resend the account verification email."""
    identifier = select_identifier(body.email, client_identifier_from_request(request))
    decision = await asyncio.to_thread(
        enforce_rate_limit, rate_limits.resend_verification, identifier, RESEND_VERIFICATION
    )

    await identity.resend_verification(body.email)
    return MessageResponse(
        message="If this email is awaiting verification, a new link has been sent.",
        remaining_attempts=decision.remaining_attempts,
    )


@router.get("/rate-limit/{action}", response_model=RateLimitStatusResponse)
def get_rate_limit_status(
    action: str,
    request: Request,
    email: Optional[str] = None,
    rate_limits: LimiterRegistry = Depends(get_rate_limits),
) -> RateLimitStatusResponse:
    """Current attempt counts for a form, without counting an attempt."""
    try:
        limiter = rate_limits.get(action)
    except UnknownActionError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown action")

    identifier = select_identifier(email, client_identifier_from_request(request))
    current = limiter.get_status(identifier, action)
    remaining_ms = limiter.get_remaining_time(identifier, action)
    return RateLimitStatusResponse(
        action=action,
        attempts=current.attempts,
        remaining_attempts=current.remaining_attempts,
        reset_time=current.reset_time,
        retry_after_ms=remaining_ms,
        retry_after_text=format_remaining_time(remaining_ms) if remaining_ms else None,
    )
