"""Orders Service models package."""

from services.orders_service.models.discount import Discount, DiscountUsage
from services.orders_service.models.enums import (
    DiscountType,
    DisputeReason,
    DisputeStatus,
    FulfillmentStatus,
    OrderStatus,
    PaymentEventType,
    PaymentStatus,
    ProcessedEventStatus,
    RefundReason,
    RefundStatus,
    StatusField,
    StockMovementKind,
)
from services.orders_service.models.inventory import ProductSku, StockMovement
from services.orders_service.models.order import Order, OrderHistory, OrderItem
from services.orders_service.models.payment import (
    Dispute,
    ProcessedPaymentEvent,
    Refund,
    RefundItem,
)

__all__ = [
    "Discount",
    "DiscountType",
    "DiscountUsage",
    "Dispute",
    "DisputeReason",
    "DisputeStatus",
    "FulfillmentStatus",
    "Order",
    "OrderHistory",
    "OrderItem",
    "OrderStatus",
    "PaymentEventType",
    "PaymentStatus",
    "ProcessedEventStatus",
    "ProcessedPaymentEvent",
    "ProductSku",
    "Refund",
    "RefundItem",
    "RefundReason",
    "RefundStatus",
    "StatusField",
    "StockMovement",
    "StockMovementKind",
]
