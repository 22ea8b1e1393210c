"""Unit tests for the stock ledger.

The ledger functions never commit; each test commits or rolls back the
db_session itself, like the order operations that call them.
"""

import uuid

import pytest
from services.orders_service.errors import InsufficientStock
from services.orders_service.models import (
    Order,
    ProductSku,
    StockMovement,
    StockMovementKind,
)
from services.orders_service.services.stock_ledger import (
    decrement_for_order,
    restock_refund_items,
    restore_for_order,
)
from sqlalchemy import select
from tests.factories import OrderFactory, ProductSkuFactory, RefundFactory


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _arrange(db, *skus, lines):
    order = OrderFactory.create(lines=lines)
    db.add_all([*skus, order])
    await db.commit()
    return order


async def _inventory(db, sku_id) -> int:
    sku = await db.get(ProductSku, sku_id, populate_existing=True)
    return sku.inventory


async def _movements(db, order_id) -> list[StockMovement]:
    result = await db.execute(
        select(StockMovement)
        .where(StockMovement.order_id == order_id)
        .order_by(StockMovement.created_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# decrement_for_order
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_decrement_takes_stock_and_records_sale(db_session):
    sku = ProductSkuFactory.create(inventory=5)
    order = await _arrange(db_session, sku, lines=[(sku, 2)])

    applied = await decrement_for_order(db_session, order)
    await db_session.commit()

    assert applied is True
    assert order.stock_decremented_at is not None
    assert await _inventory(db_session, sku.id) == 3
    movements = await _movements(db_session, order.id)
    assert [(m.kind, m.quantity) for m in movements] == [(StockMovementKind.SALE, -2)]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_decrement_is_idempotent_per_order(db_session):
    sku = ProductSkuFactory.create(inventory=5)
    order = await _arrange(db_session, sku, lines=[(sku, 2)])

    await decrement_for_order(db_session, order)
    await db_session.commit()
    again = await decrement_for_order(db_session, order)
    await db_session.commit()

    assert again is False
    assert await _inventory(db_session, sku.id) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_decrement_sums_lines_for_the_same_sku(db_session):
    sku = ProductSkuFactory.create(inventory=5)
    order = await _arrange(db_session, sku, lines=[(sku, 1), (sku, 3)])

    await decrement_for_order(db_session, order)
    await db_session.commit()

    assert await _inventory(db_session, sku.id) == 1
    assert len(await _movements(db_session, order.id)) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_insufficient_stock_rolls_back_every_line(db_session):
    """One short SKU fails the whole decrement; nothing goes negative."""
    plenty = ProductSkuFactory.create(inventory=10)
    scarce = ProductSkuFactory.create(inventory=1)
    order = await _arrange(db_session, plenty, scarce, lines=[(plenty, 2), (scarce, 2)])
    plenty_id, scarce_id, order_id = plenty.id, scarce.id, order.id

    with pytest.raises(InsufficientStock) as exc:
        await decrement_for_order(db_session, order)
    await db_session.rollback()

    assert exc.value.available == 1
    assert await _inventory(db_session, plenty_id) == 10
    assert await _inventory(db_session, scarce_id) == 1
    reloaded = await db_session.get(Order, order_id, populate_existing=True)
    assert reloaded.stock_decremented_at is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_selling_out_deactivates_and_restore_reactivates(db_session):
    sku = ProductSkuFactory.create(inventory=2)
    order = await _arrange(db_session, sku, lines=[(sku, 2)])

    await decrement_for_order(db_session, order)
    await db_session.commit()
    sold_out = await db_session.get(ProductSku, sku.id, populate_existing=True)
    assert sold_out.inventory == 0
    assert sold_out.is_active is False

    await restore_for_order(db_session, order, reason="Order cancelled")
    await db_session.commit()
    restocked = await db_session.get(ProductSku, sku.id, populate_existing=True)
    assert restocked.inventory == 2
    assert restocked.is_active is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_sku_is_skipped(db_session):
    present = ProductSkuFactory.create(inventory=4)
    gone = ProductSkuFactory.create(inventory=4)
    order = await _arrange(db_session, present, lines=[(present, 1), (gone, 1)])

    applied = await decrement_for_order(db_session, order)
    await db_session.commit()

    assert applied is True
    assert await _inventory(db_session, present.id) == 3


# ---------------------------------------------------------------------------
# restore_for_order
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restore_twice_restores_once(db_session):
    sku = ProductSkuFactory.create(inventory=5)
    order = await _arrange(db_session, sku, lines=[(sku, 2)])
    await decrement_for_order(db_session, order)
    await db_session.commit()

    first = await restore_for_order(db_session, order)
    await db_session.commit()
    second = await restore_for_order(db_session, order)
    await db_session.commit()

    assert first == 2
    assert second == 0
    assert await _inventory(db_session, sku.id) == 5
    kinds = [m.kind for m in await _movements(db_session, order.id)]
    assert kinds.count(StockMovementKind.RESTOCK) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restore_without_decrement_is_a_no_op(db_session):
    sku = ProductSkuFactory.create(inventory=5)
    order = await _arrange(db_session, sku, lines=[(sku, 2)])

    restored = await restore_for_order(db_session, order)
    await db_session.commit()

    assert restored == 0
    assert order.stock_restored_at is None
    assert await _inventory(db_session, sku.id) == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restore_skips_units_already_restocked_by_refund(db_session):
    sku = ProductSkuFactory.create(inventory=5)
    order = await _arrange(db_session, sku, lines=[(sku, 3)])
    await decrement_for_order(db_session, order)
    await db_session.commit()
    assert await _inventory(db_session, sku.id) == 2

    refund = RefundFactory.create(order, items=[(order.items[0], 1, True)])
    db_session.add(refund)
    await db_session.commit()

    assert await restock_refund_items(db_session, order, refund) == 1
    await db_session.commit()
    assert await _inventory(db_session, sku.id) == 3

    # Restocking the same refund again does nothing
    assert await restock_refund_items(db_session, order, refund) == 0

    assert await restore_for_order(db_session, order) == 2
    await db_session.commit()
    assert await _inventory(db_session, sku.id) == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_items_without_restock_flag_stay_out(db_session):
    sku = ProductSkuFactory.create(inventory=5)
    order = await _arrange(db_session, sku, lines=[(sku, 2)])
    await decrement_for_order(db_session, order)
    refund = RefundFactory.create(order, items=[(order.items[0], 1, False)])
    db_session.add(refund)
    await db_session.commit()

    assert await restock_refund_items(db_session, order, refund) == 0
    await db_session.commit()
    assert await _inventory(db_session, sku.id) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_inventory_never_negative_across_competing_orders(db_session):
    sku = ProductSkuFactory.create(inventory=3)
    first = OrderFactory.create(lines=[(sku, 2)])
    second = OrderFactory.create(lines=[(sku, 2)])
    db_session.add_all([sku, first, second])
    await db_session.commit()
    sku_id, second_id = sku.id, second.id

    await decrement_for_order(db_session, first)
    await db_session.commit()
    with pytest.raises(InsufficientStock):
        await decrement_for_order(db_session, second)
    await db_session.rollback()

    assert await _inventory(db_session, sku_id) == 1
    await restore_for_order(
        db_session, await db_session.get(Order, second_id, populate_existing=True)
    )
    await db_session.commit()
    assert await _inventory(db_session, sku_id) == 1
