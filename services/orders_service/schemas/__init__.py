"""Orders Service schemas package."""

from services.orders_service.schemas.discounts import (
    DiscountCreate,
    DiscountResponse,
    DiscountValidateRequest,
    DiscountValidateResponse,
)
from services.orders_service.schemas.orders import (
    BulkTransitionRequest,
    BulkTransitionResponse,
    CheckoutRequest,
    OrderHistoryResponse,
    OrderResponse,
    TransitionRequest,
    TransitionResultResponse,
)
from services.orders_service.schemas.refunds import (
    RefundActionResultResponse,
    RefundCreate,
    RefundResponse,
    RefundReviewRequest,
    RefundReviewResponse,
)

__all__ = [
    "BulkTransitionRequest",
    "BulkTransitionResponse",
    "CheckoutRequest",
    "DiscountCreate",
    "DiscountResponse",
    "DiscountValidateRequest",
    "DiscountValidateResponse",
    "OrderHistoryResponse",
    "OrderResponse",
    "RefundActionResultResponse",
    "RefundCreate",
    "RefundResponse",
    "RefundReviewRequest",
    "RefundReviewResponse",
    "TransitionRequest",
    "TransitionResultResponse",
]
