"""Checkout: turn a cart snapshot into a pending order.

Prices and titles are copied from the SKU rows at submission time. Stock is
checked but not taken; it is decremented when the processor confirms the
payment.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.orders_service.errors import CheckoutValidationError
from services.orders_service.models import (
    FulfillmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ProductSku,
)
from services.orders_service.services.discount_ledger import validate_discount
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

CENT = Decimal("0.01")
ORDER_NUMBER_ATTEMPTS = 5


@dataclass
class CartLine:
    sku_id: uuid.UUID
    quantity: int


@dataclass
class CustomerInfo:
    email: str
    name: str
    customer_id: Optional[str] = None
    phone: Optional[str] = None
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None


@dataclass
class CartSnapshot:
    lines: list[CartLine] = field(default_factory=list)
    shipping_cost: Decimal = Decimal("0.00")


async def _unique_order_number(db: AsyncSession) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = Order.generate_order_number()
        taken = (
            await db.execute(select(Order.id).where(Order.order_number == candidate))
        ).scalar_one_or_none()
        if taken is None:
            return candidate
    raise RuntimeError("Could not allocate a unique order number")


async def create_order(
    db: AsyncSession,
    cart: CartSnapshot,
    customer: CustomerInfo,
    discount_code: Optional[str] = None,
) -> Order:
    """Validate the cart and create a pending/pending/unfulfilled order.

    Raises CheckoutValidationError without writing anything when the cart is
    empty, a line is invalid, a SKU is unknown, inactive or short of stock, or
    the discount code is rejected.
    """
    if not cart.lines:
        raise CheckoutValidationError("Cart is empty", field="items")

    seen: set[uuid.UUID] = set()
    for line in cart.lines:
        if line.quantity <= 0:
            raise CheckoutValidationError(
                "Quantity must be at least 1", field="items"
            )
        if line.sku_id in seen:
            raise CheckoutValidationError(
                f"SKU {line.sku_id} appears more than once", field="items"
            )
        seen.add(line.sku_id)

    shipping_cost = Decimal(cart.shipping_cost or 0).quantize(CENT)
    if shipping_cost < 0:
        raise CheckoutValidationError(
            "Shipping cost cannot be negative", field="shipping_cost"
        )

    result = await db.execute(select(ProductSku).where(ProductSku.id.in_(seen)))
    skus = {sku.id: sku for sku in result.scalars().all()}

    items: list[OrderItem] = []
    subtotal = Decimal("0.00")
    for line in cart.lines:
        sku = skus.get(line.sku_id)
        if sku is None or not sku.is_active:
            raise CheckoutValidationError(
                f"SKU {line.sku_id} is not available", field="items"
            )
        if sku.inventory < line.quantity:
            raise CheckoutValidationError(
                f"Only {sku.inventory} unit(s) of {sku.sku_code} left in stock",
                field="items",
            )
        line_total = (sku.price * line.quantity).quantize(CENT)
        subtotal += line_total
        items.append(
            OrderItem(
                sku_id=sku.id,
                sku_code=sku.sku_code,
                product_title=sku.product_title,
                variant_label=sku.variant_label,
                quantity=line.quantity,
                unit_price=sku.price,
                line_total=line_total,
            )
        )

    discount_amount = Decimal("0.00")
    applied_code = None
    if discount_code and discount_code.strip():
        validation = await validate_discount(
            db, discount_code, subtotal, customer_id=customer.customer_id
        )
        if not validation.valid:
            raise CheckoutValidationError(validation.message, field="discount_code")
        discount_amount = validation.amount
        applied_code = validation.code

    total = subtotal - discount_amount + shipping_cost

    try:
        order = Order(
            order_number=await _unique_order_number(db),
            customer_id=customer.customer_id,
            customer_email=customer.email,
            customer_name=customer.name,
            customer_phone=customer.phone,
            shipping_address=customer.shipping_address,
            billing_address=customer.billing_address,
            currency=get_settings().DEFAULT_CURRENCY,
            subtotal=subtotal,
            discount_amount=discount_amount,
            shipping_cost=shipping_cost,
            total=total,
            discount_code=applied_code,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            fulfillment_status=FulfillmentStatus.UNFULFILLED,
            items=items,
        )
        db.add(order)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Created order %s (%d item(s), total %s)",
        order.order_number,
        len(items),
        order.total,
        extra={"extra_fields": {"order_id": str(order.id)}},
    )
    return order
