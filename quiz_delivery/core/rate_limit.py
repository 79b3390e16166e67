import asyncio
import logging
from typing import Dict, Optional
from fastapi import Depends, Request
from quiz_delivery.core.auth import TokenData, get_optional_user
from quiz_delivery.core.cache import CacheBackend, get_rate_limit_store
from quiz_delivery.core.config import settings
from quiz_delivery.core.errors import RateLimited

logger = logging.getLogger(__name__)

def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "127.0.0.1"

def rate_limit(route: str, limit: Optional[int] = None, window: Optional[int] = None):
    """Fixed-window limiter per (route, user), falling back to client IP for anonymous calls.

    A counter store that does not answer within RATE_LIMIT_TIMEOUT_SECONDS lets the request through.
    """
    async def checker(request: Request, user: Optional[TokenData] = Depends(get_optional_user), store: CacheBackend = Depends(get_rate_limit_store)):
        if not settings.RATE_LIMIT_ENABLED:
            return
        max_requests = limit or settings.RATE_LIMIT_PER_MINUTE
        seconds = window or settings.RATE_LIMIT_WINDOW_SECONDS
        identity = f"user:{user.sub}" if user else f"ip:{client_ip(request)}"
        try:
            count = await asyncio.wait_for(store.incr(f"rate_limit:{route}:{identity}", seconds), settings.RATE_LIMIT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Rate limit store timed out route=%s, allowing request", route)
            return
        request.state.rate_limit = (max_requests, max(0, max_requests - count))
        if count > max_requests:
            logger.warning("Rate limit exceeded route=%s identity=%s", route, identity)
            raise RateLimited(retry_after=seconds)
    return checker

def rate_limit_headers(request: Request) -> Dict[str, str]:
    info = getattr(request.state, "rate_limit", None)
    if not info:
        return {}
    max_requests, remaining = info
    return {"X-RateLimit-Limit": str(max_requests), "X-RateLimit-Remaining": str(remaining)}
