import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from services.orders_service.models import (
    FulfillmentStatus,
    OrderStatus,
    PaymentStatus,
    StatusField,
)

# ============================================================================
# CHECKOUT
# ============================================================================


class CartLineRequest(BaseModel):
    sku_id: uuid.UUID
    quantity: int


class CustomerRequest(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None


class CheckoutRequest(BaseModel):
    items: list[CartLineRequest]
    customer: CustomerRequest
    discount_code: Optional[str] = None
    shipping_cost: Decimal = Field(default=Decimal("0.00"), ge=0)


class OrderItemResponse(BaseModel):
    id: uuid.UUID
    sku_id: uuid.UUID
    sku_code: str
    product_title: str
    variant_label: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: uuid.UUID
    order_number: str
    customer_id: Optional[str] = None
    customer_email: str
    customer_name: str
    currency: str
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    total: Decimal
    discount_code: Optional[str] = None
    status: OrderStatus
    payment_status: PaymentStatus
    fulfillment_status: FulfillmentStatus
    version: int
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    items: list[OrderItemResponse] = []

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# ADMIN TRANSITIONS
# ============================================================================


class TransitionRequest(BaseModel):
    field: StatusField
    target: str
    reason: Optional[str] = Field(default=None, max_length=1000)
    expected_version: Optional[int] = None


class BulkTransitionItem(TransitionRequest):
    order_id: uuid.UUID


class BulkTransitionRequest(BaseModel):
    items: list[BulkTransitionItem] = Field(min_length=1, max_length=100)


class TransitionResultResponse(BaseModel):
    order_id: uuid.UUID
    success: bool
    version: Optional[int] = None
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BulkTransitionResponse(BaseModel):
    results: list[TransitionResultResponse]
    succeeded: int
    failed: int


class OrderHistoryResponse(BaseModel):
    id: uuid.UUID
    field: StatusField
    previous_value: str
    new_value: str
    actor: str
    reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
