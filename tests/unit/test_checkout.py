"""Unit tests for checkout order creation."""

import uuid
from decimal import Decimal

import pytest
from services.orders_service.errors import CheckoutValidationError
from services.orders_service.models import (
    DiscountUsage,
    FulfillmentStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    ProductSku,
)
from services.orders_service.services.checkout import (
    CartLine,
    CartSnapshot,
    CustomerInfo,
    create_order,
)
from sqlalchemy import func, select
from tests.factories import DiscountFactory, ProductSkuFactory

CUSTOMER = CustomerInfo(email="ada@example.com", name="Ada", customer_id="cust-ada")


async def _order_count(db) -> int:
    return (await db.execute(select(func.count(Order.id)))).scalar_one()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_snapshots_prices_and_applies_discount(db_session):
    cuff = ProductSkuFactory.create(price=Decimal("25.00"), inventory=5)
    ring = ProductSkuFactory.create(price=Decimal("12.50"), inventory=1)
    discount = DiscountFactory.create(code="WELCOME10", value=Decimal("10"))
    db_session.add_all([cuff, ring, discount])
    await db_session.commit()

    order = await create_order(
        db_session,
        CartSnapshot(
            lines=[CartLine(cuff.id, 2), CartLine(ring.id, 1)],
            shipping_cost=Decimal("4.90"),
        ),
        CUSTOMER,
        discount_code="welcome10",
    )

    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.fulfillment_status == FulfillmentStatus.UNFULFILLED
    assert order.subtotal == Decimal("62.50")
    assert order.discount_amount == Decimal("6.25")
    assert order.total == Decimal("61.15")
    assert order.discount_code == "WELCOME10"
    assert order.order_number.startswith("ORD-")
    assert sorted(i.sku_code for i in order.items) == sorted(
        [cuff.sku_code, ring.sku_code]
    )

    # Stock is only taken when payment is confirmed, and the code is not
    # redeemed until then either.
    stored = await db_session.get(ProductSku, cuff.id, populate_existing=True)
    assert stored.inventory == 5
    usages = (
        await db_session.execute(select(func.count(DiscountUsage.id)))
    ).scalar_one()
    assert usages == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_cart_is_rejected(db_session):
    with pytest.raises(CheckoutValidationError) as exc:
        await create_order(db_session, CartSnapshot(), CUSTOMER)
    assert exc.value.field == "items"


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("quantity", [0, -1])
async def test_non_positive_quantity_is_rejected(db_session, quantity):
    sku = ProductSkuFactory.create()
    db_session.add(sku)
    await db_session.commit()

    with pytest.raises(CheckoutValidationError):
        await create_order(
            db_session, CartSnapshot(lines=[CartLine(sku.id, quantity)]), CUSTOMER
        )
    assert await _order_count(db_session) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_and_inactive_skus_are_rejected(db_session):
    inactive = ProductSkuFactory.create(is_active=False)
    db_session.add(inactive)
    await db_session.commit()

    for sku_id in (uuid.uuid4(), inactive.id):
        with pytest.raises(CheckoutValidationError) as exc:
            await create_order(
                db_session, CartSnapshot(lines=[CartLine(sku_id, 1)]), CUSTOMER
            )
        assert "not available" in exc.value.detail


@pytest.mark.asyncio
@pytest.mark.unit
async def test_quantity_above_stock_is_rejected(db_session):
    sku = ProductSkuFactory.create(inventory=2)
    db_session.add(sku)
    await db_session.commit()

    with pytest.raises(CheckoutValidationError) as exc:
        await create_order(
            db_session, CartSnapshot(lines=[CartLine(sku.id, 3)]), CUSTOMER
        )
    assert "Only 2 unit(s)" in exc.value.detail
    assert await _order_count(db_session) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_rejected_discount_blocks_checkout(db_session):
    sku = ProductSkuFactory.create()
    expired = DiscountFactory.create(code="GONE", is_active=False)
    db_session.add_all([sku, expired])
    await db_session.commit()

    with pytest.raises(CheckoutValidationError) as exc:
        await create_order(
            db_session,
            CartSnapshot(lines=[CartLine(sku.id, 1)]),
            CUSTOMER,
            discount_code="GONE",
        )
    assert exc.value.field == "discount_code"
    assert await _order_count(db_session) == 0
