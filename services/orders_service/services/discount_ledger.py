"""Discount ledger: code validation (read only) and redemption at payment."""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from libs.common.datetime_utils import to_utc, utc_now
from libs.common.logging import get_logger
from services.orders_service.models import (
    Discount,
    DiscountType,
    DiscountUsage,
    Order,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

CENT = Decimal("0.01")

# Rejection reasons
NOT_FOUND = "not_found"
INACTIVE = "inactive"
NOT_YET_ACTIVE = "not_yet_active"
EXPIRED = "expired"
MIN_SUBTOTAL_NOT_MET = "min_subtotal_not_met"
USAGE_LIMIT_REACHED = "usage_limit_reached"
CUSTOMER_LIMIT_REACHED = "customer_limit_reached"

REJECTION_MESSAGES = {
    NOT_FOUND: "Invalid discount code",
    INACTIVE: "Discount code is no longer active",
    NOT_YET_ACTIVE: "Discount code is not yet active",
    EXPIRED: "Discount code has expired",
    MIN_SUBTOTAL_NOT_MET: "Order subtotal is below the minimum for this code",
    USAGE_LIMIT_REACHED: "Discount code has reached its usage limit",
    CUSTOMER_LIMIT_REACHED: "You have already used this discount code",
}


def normalize_code(code: str) -> str:
    return code.strip().upper()


@dataclass
class DiscountValidation:
    valid: bool
    code: str
    amount: Decimal = Decimal("0.00")
    reason: Optional[str] = None
    discount: Optional[Discount] = None

    @property
    def message(self) -> Optional[str]:
        return REJECTION_MESSAGES.get(self.reason) if self.reason else None


def compute_discount_amount(discount: Discount, subtotal: Decimal) -> Decimal:
    """Amount to deduct, rounded half-up to cents and never above the subtotal."""
    if discount.discount_type == DiscountType.PERCENTAGE:
        amount = (subtotal * Decimal(discount.value) / Decimal("100")).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
    else:
        amount = Decimal(discount.value).quantize(CENT, rounding=ROUND_HALF_UP)
    return max(min(amount, subtotal), Decimal("0.00"))


async def count_usages(
    db: AsyncSession, discount_id, customer_id: Optional[str] = None
) -> int:
    query = select(func.count(DiscountUsage.id)).where(
        DiscountUsage.discount_id == discount_id
    )
    if customer_id is not None:
        query = query.where(DiscountUsage.customer_id == customer_id)
    return (await db.execute(query)).scalar_one()


async def validate_discount(
    db: AsyncSession,
    code: str,
    subtotal: Decimal,
    customer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DiscountValidation:
    """Check whether ``code`` can be applied to a cart worth ``subtotal``.

    Usage counts are derived from DiscountUsage rows on every call, never from
    a stored counter. Nothing is written.
    """
    normalized = normalize_code(code)
    now = to_utc(now) or utc_now()
    subtotal = Decimal(subtotal)

    discount = (
        await db.execute(select(Discount).where(Discount.code == normalized))
    ).scalar_one_or_none()
    if discount is None:
        return DiscountValidation(valid=False, code=normalized, reason=NOT_FOUND)

    def reject(reason: str) -> DiscountValidation:
        return DiscountValidation(
            valid=False, code=normalized, reason=reason, discount=discount
        )

    if not discount.is_active:
        return reject(INACTIVE)
    valid_from = to_utc(discount.valid_from)
    if valid_from and valid_from > now:
        return reject(NOT_YET_ACTIVE)
    valid_until = to_utc(discount.valid_until)
    if valid_until and valid_until < now:
        return reject(EXPIRED)
    if discount.min_subtotal is not None and subtotal < discount.min_subtotal:
        return reject(MIN_SUBTOTAL_NOT_MET)

    if discount.max_uses is not None:
        if await count_usages(db, discount.id) >= discount.max_uses:
            return reject(USAGE_LIMIT_REACHED)

    if customer_id and discount.max_uses_per_customer is not None:
        used = await count_usages(db, discount.id, customer_id=customer_id)
        if used >= discount.max_uses_per_customer:
            return reject(CUSTOMER_LIMIT_REACHED)

    return DiscountValidation(
        valid=True,
        code=normalized,
        amount=compute_discount_amount(discount, subtotal),
        discount=discount,
    )


async def redeem_discount(db: AsyncSession, order: Order) -> Optional[DiscountUsage]:
    """Record the order's discount usage. Runs inside the payment transaction.

    No-op when the order carries no code or already has a usage row.
    """
    if not order.discount_code:
        return None

    existing = (
        await db.execute(
            select(DiscountUsage.id).where(DiscountUsage.order_id == order.id)
        )
    ).scalar_one_or_none()
    if existing is not None:
        return None

    discount = (
        await db.execute(
            select(Discount).where(Discount.code == normalize_code(order.discount_code))
        )
    ).scalar_one_or_none()
    if discount is None:
        logger.warning(
            "Discount %s on order %s no longer exists; usage not recorded",
            order.discount_code,
            order.order_number,
            extra={"extra_fields": {"order_id": str(order.id)}},
        )
        return None

    if discount.max_uses is not None:
        used = await count_usages(db, discount.id)
        if used >= discount.max_uses:
            # Paid anyway; the customer keeps the price they were quoted
            logger.warning(
                "Discount %s redeemed past its limit (%d/%d) by order %s",
                discount.code,
                used + 1,
                discount.max_uses,
                order.order_number,
            )

    usage = DiscountUsage(
        discount_id=discount.id,
        order_id=order.id,
        customer_id=order.customer_id,
        customer_email=order.customer_email,
        code=discount.code,
        amount_applied=order.discount_amount,
    )
    db.add(usage)
    return usage
