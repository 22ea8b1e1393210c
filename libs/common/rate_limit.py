"""Rate limiting for the public storefront endpoints.

Uses slowapi with the shared Redis as storage so limits hold across API
instances. Admin and webhook routes are not limited here; the webhook is
authenticated by its signature and the processor controls its own rate.
"""

from functools import lru_cache

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings

CHECKOUT_LIMIT = "10/minute"
DISCOUNT_PREVIEW_LIMIT = "30/minute"


def _get_client_ip(request: Request) -> str:
    """
    Client IP, honouring the first hop of X-Forwarded-For behind a proxy.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


@lru_cache
def get_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=_get_client_ip,
        storage_uri=settings.REDIS_URL,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    retry_after = exc.detail.split("per")[0].strip() if exc.detail else "1 minute"
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded. Try again in {retry_after}."},
        headers={"Retry-After": str(getattr(exc, "retry_after", 60))},
    )
