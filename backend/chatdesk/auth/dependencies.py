"""
FastAPI dependency guarding the admin routes.

Flow:
  1. Extract Bearer token from the Authorization header
  2. Hash it (SHA-256) and compare against ADMIN_API_KEY_HASH
  3. Return the AppContext so admin routers get services in one dependency

Security:
  • Generic 401 for ALL failure modes (missing, malformed, wrong key,
    no key configured)
  • Raw keys are never logged
"""

from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, status

from chatdesk.auth.hashing import verify_api_key
from chatdesk.core.context import AppContext, get_context

logger = logging.getLogger(__name__)

_AUTH_FAILED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or missing admin key.",
    headers={"WWW-Authenticate": "Bearer"},
)


async def require_admin(
    authorization: str | None = Header(default=None, alias="Authorization"),
    ctx: AppContext = Depends(get_context),
) -> AppContext:
    """
    Usage in routers:
        Admin = Annotated[AppContext, Depends(require_admin)]
    """
    if not authorization:
        raise _AUTH_FAILED

    parts = authorization.split(" ", maxsplit=1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _AUTH_FAILED

    if not ctx.settings.ADMIN_API_KEY_HASH:
        logger.error("Admin request rejected: ADMIN_API_KEY_HASH is not configured")
        raise _AUTH_FAILED

    if not verify_api_key(parts[1], ctx.settings.ADMIN_API_KEY_HASH):
        raise _AUTH_FAILED

    return ctx
