import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.orders_service.models import RefundReason, RefundStatus


class RefundItemRequest(BaseModel):
    order_item_id: uuid.UUID
    quantity: int = Field(ge=1)
    restock: bool = False


class RefundCreate(BaseModel):
    order_id: uuid.UUID
    reason: RefundReason
    items: list[RefundItemRequest] = []
    amount: Optional[Decimal] = Field(default=None, gt=0)
    note: Optional[str] = Field(default=None, max_length=2000)


class RefundItemResponse(BaseModel):
    id: uuid.UUID
    order_item_id: uuid.UUID
    quantity: int
    amount: Decimal
    restock: bool

    model_config = ConfigDict(from_attributes=True)


class RefundResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    external_id: Optional[str] = None
    amount: Decimal
    reason: RefundReason
    status: RefundStatus
    failure_reason: Optional[str] = None
    note: Optional[str] = None
    requested_by: Optional[str] = None
    reviewed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    items: list[RefundItemResponse] = []

    model_config = ConfigDict(from_attributes=True)


class RefundReviewRequest(BaseModel):
    refund_ids: list[uuid.UUID] = Field(min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=2000)


class RefundActionResultResponse(BaseModel):
    refund_id: uuid.UUID
    success: bool
    status: Optional[RefundStatus] = None
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RefundReviewResponse(BaseModel):
    results: list[RefundActionResultResponse]
    succeeded: int
    failed: int
