"""Shared FastAPI dependencies."""

import hmac

from fastapi import Depends, Header, Request

from app.core.config import get_settings
from app.core.exceptions import ForbiddenError
from app.core.logging import bind_caller_context
from app.services.paion import CallerContext
from app.storage.base import LedgerStore, NotificationStore

LEDGER_KEY_HEADER = "X-Ledger-Key"


async def get_ledger_store(request: Request) -> LedgerStore:
    """Dependency: store handle created at startup."""
    return request.app.state.ledger_store


async def get_notification_store(request: Request) -> NotificationStore:
    return request.app.state.notification_store


async def get_redis(request: Request):
    """Redis client for the stats cache, or None when caching is off."""
    return getattr(request.app.state, "redis", None)


async def get_caller_context(
    x_ledger_key: str | None = Header(default=None, alias=LEDGER_KEY_HEADER),
) -> CallerContext:
    """Dependency: server context only for requests carrying the configured service key."""
    expected = get_settings().ledger_service_key
    context = CallerContext.CLIENT
    if expected and x_ledger_key and hmac.compare_digest(expected.encode(), x_ledger_key.encode()):
        context = CallerContext.SERVER
    bind_caller_context(context.value)
    return context


async def require_server(context: CallerContext = Depends(get_caller_context)) -> CallerContext:
    if context != CallerContext.SERVER:
        raise ForbiddenError("Server context required")
    return context
