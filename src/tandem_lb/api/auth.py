"""API key check for endpoints that change rotation state."""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

API_KEY_HEADER = "X-API-Key"


def presented_key(request: Request) -> str:
    """Key from ``X-API-Key``, or from an ``Authorization: Bearer`` header."""
    key = request.headers.get(API_KEY_HEADER)
    if key:
        return key
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    return token.strip() if scheme.lower() == "bearer" else ""


async def require_api_key(request: Request) -> None:
    """Reject the request unless it carries the configured key.

    With no key configured, every request is allowed.
    """
    expected = request.app.state.config.auth.api_key
    if not expected:
        return
    if not hmac.compare_digest(presented_key(request).encode(), expected.encode()):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
