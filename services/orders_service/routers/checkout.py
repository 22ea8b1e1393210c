"""Storefront router: checkout submission and discount preview."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.common.rate_limit import CHECKOUT_LIMIT, DISCOUNT_PREVIEW_LIMIT, limiter
from libs.db.session import get_async_db
from services.orders_service.schemas import (
    CheckoutRequest,
    DiscountValidateRequest,
    DiscountValidateResponse,
    OrderResponse,
)
from services.orders_service.services.checkout import (
    CartLine,
    CartSnapshot,
    CustomerInfo,
    create_order,
)
from services.orders_service.services.discount_ledger import validate_discount
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/store", tags=["store"])


@router.post(
    "/checkout", response_model=OrderResponse, status_code=status.HTTP_201_CREATED
)
@limiter.limit(CHECKOUT_LIMIT)
async def checkout(
    request: Request,
    payload: CheckoutRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a pending order from the submitted cart.

    Stock is checked but not reserved; it is taken when payment is confirmed.
    """
    cart = CartSnapshot(
        lines=[CartLine(sku_id=i.sku_id, quantity=i.quantity) for i in payload.items],
        shipping_cost=payload.shipping_cost,
    )
    customer = CustomerInfo(
        email=payload.customer.email,
        name=payload.customer.name,
        customer_id=current_user.user_id if current_user else None,
        phone=payload.customer.phone,
        shipping_address=payload.customer.shipping_address,
        billing_address=payload.customer.billing_address,
    )
    return await create_order(db, cart, customer, discount_code=payload.discount_code)


@router.post("/discounts/validate", response_model=DiscountValidateResponse)
@limiter.limit(DISCOUNT_PREVIEW_LIMIT)
async def preview_discount(
    request: Request,
    payload: DiscountValidateRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Preview a discount code. Does NOT consume a usage."""
    validation = await validate_discount(
        db,
        payload.code,
        payload.subtotal,
        customer_id=current_user.user_id if current_user else None,
    )
    return DiscountValidateResponse(
        valid=validation.valid,
        code=validation.code,
        discount_amount=validation.amount,
        final_subtotal=payload.subtotal - validation.amount,
        reason=validation.reason,
        message=validation.message,
    )
