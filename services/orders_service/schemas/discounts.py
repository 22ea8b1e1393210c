import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from services.orders_service.models import DiscountType


class DiscountCreate(BaseModel):
    code: str = Field(min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)
    discount_type: DiscountType
    value: Decimal = Field(gt=0)
    min_subtotal: Optional[Decimal] = Field(default=None, ge=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    max_uses_per_customer: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("value")
    @classmethod
    def percentage_in_range(cls, v: Decimal, info) -> Decimal:
        if info.data.get("discount_type") == DiscountType.PERCENTAGE and v > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return v


class DiscountResponse(BaseModel):
    id: uuid.UUID
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    value: Decimal
    min_subtotal: Optional[Decimal] = None
    max_uses: Optional[int] = None
    max_uses_per_customer: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DiscountValidateRequest(BaseModel):
    code: str
    subtotal: Decimal = Field(ge=0)


class DiscountValidateResponse(BaseModel):
    valid: bool
    code: str
    discount_amount: Decimal = Decimal("0.00")
    final_subtotal: Decimal
    reason: Optional[str] = None
    message: Optional[str] = None
