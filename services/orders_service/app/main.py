"""FastAPI application for the Orders Service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from libs.common.logging import configure_logging, get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from libs.common.redis import close_redis
from services.orders_service.errors import OrderEngineError
from services.orders_service.routers import (
    admin_orders_router,
    admin_refunds_router,
    checkout_router,
    discounts_router,
    webhooks_router,
)
from slowapi.errors import RateLimitExceeded

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield
    await close_redis()


async def order_engine_error_handler(request: Request, exc: OrderEngineError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.detail}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app() -> FastAPI:
    """Create and configure the Orders Service FastAPI app."""
    app = FastAPI(
        title="Orders Service",
        version="0.1.0",
        description="Order lifecycle and inventory reconciliation.",
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    add_observability_middleware(app)
    app.add_exception_handler(OrderEngineError, order_engine_error_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "orders"}

    app.include_router(checkout_router)
    app.include_router(webhooks_router)
    app.include_router(admin_orders_router)
    app.include_router(admin_refunds_router)
    app.include_router(discounts_router)

    return app


app = create_app()
