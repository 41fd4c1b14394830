"""Best-effort identifiers for callers that have not supplied an email yet.

The fingerprint combines a truncated User-Agent with the host the request was
addressed to. It is easy to spoof and shared by every caller with the same
browser on the same site, so it is never a security boundary; it only keeps
anonymous attempts out of a single global bucket.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Request

USER_AGENT_PREFIX_LENGTH = 50
FALLBACK_IDENTIFIER = "server"


def resolve_client_identifier(
    user_agent: Optional[str] = None,
    host: Optional[str] = None,
) -> str:
    """Combine the available client signals into a fingerprint string."""
    if not user_agent and not host:
        return FALLBACK_IDENTIFIER
    return f"{(user_agent or '')[:USER_AGENT_PREFIX_LENGTH]}_{host or ''}"


def client_identifier_from_request(request: Request) -> str:
    host = request.url.hostname
    if not host and request.client:
        host = request.client.host
    return resolve_client_identifier(request.headers.get("user-agent"), host)


def select_identifier(email: Optional[str], fallback: str) -> str:
    """Prefer the caller's email over the client fingerprint."""
    if email and email.strip():
        return email.strip().lower()
    return fallback
