"""Routers package."""

from services.orders_service.routers.admin_orders import router as admin_orders_router
from services.orders_service.routers.admin_refunds import (
    router as admin_refunds_router,
)
from services.orders_service.routers.checkout import router as checkout_router
from services.orders_service.routers.discounts import router as discounts_router
from services.orders_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_orders_router",
    "admin_refunds_router",
    "checkout_router",
    "discounts_router",
    "webhooks_router",
]
