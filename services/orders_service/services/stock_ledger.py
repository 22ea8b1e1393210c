"""Stock ledger: the only code that changes ProductSku.inventory.

Every function here runs inside the caller's order transaction and never
commits. Idempotency is tracked per order through ``stock_decremented_at`` and
``stock_restored_at`` (and per refund through ``restocked_at``), not by
comparing inventory numbers.
"""

import uuid
from collections import defaultdict
from typing import Iterable, Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import InsufficientStock
from services.orders_service.models import (
    Order,
    OrderItem,
    ProductSku,
    Refund,
    RefundItem,
    StockMovement,
    StockMovementKind,
)
from services.orders_service.services.post_commit import PostCommitTasks
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _quantities_by_sku(
    items: Iterable[tuple[uuid.UUID, str, int]],
) -> list[tuple[uuid.UUID, str, int]]:
    """Sum quantities per SKU, sorted by SKU id so concurrent writers lock
    SKU rows in the same order."""
    totals: dict[uuid.UUID, int] = defaultdict(int)
    codes: dict[uuid.UUID, str] = {}
    for sku_id, sku_code, quantity in items:
        if quantity <= 0:
            continue
        totals[sku_id] += quantity
        codes[sku_id] = sku_code
    return [(sku_id, codes[sku_id], totals[sku_id]) for sku_id in sorted(totals, key=str)]


async def _increment(
    db: AsyncSession,
    *,
    sku_id: uuid.UUID,
    sku_code: str,
    quantity: int,
    order_id: uuid.UUID,
    reason: str,
    tasks: Optional[PostCommitTasks],
) -> bool:
    result = await db.execute(
        update(ProductSku)
        .where(ProductSku.id == sku_id)
        .values(inventory=ProductSku.inventory + quantity, updated_at=utc_now())
    )
    if result.rowcount == 0:
        logger.warning(
            "SKU %s no longer exists; skipping restock of %d unit(s)",
            sku_code,
            quantity,
            extra={"extra_fields": {"order_id": str(order_id), "sku_id": str(sku_id)}},
        )
        return False

    # Back in stock after a sell-out: reactivate
    await db.execute(
        update(ProductSku)
        .where(
            ProductSku.id == sku_id,
            ProductSku.inventory == quantity,
            ProductSku.is_active.is_(False),
        )
        .values(is_active=True)
    )
    db.add(
        StockMovement(
            sku_id=sku_id,
            order_id=order_id,
            kind=StockMovementKind.RESTOCK,
            quantity=quantity,
            reason=reason,
        )
    )
    if tasks is not None:
        tasks.touch_sku(sku_id)
    return True


# ---------------------------------------------------------------------------
# Order-level operations
# ---------------------------------------------------------------------------


async def decrement_for_order(
    db: AsyncSession,
    order: Order,
    *,
    tasks: Optional[PostCommitTasks] = None,
) -> bool:
    """Take the order's quantities out of stock.

    Returns False if this order was already decremented. Raises
    InsufficientStock when any SKU cannot cover its quantity; the caller's
    transaction must then be rolled back as a whole.
    """
    if order.stock_decremented_at is not None:
        logger.info("Stock already decremented for order %s", order.order_number)
        return False

    lines = _quantities_by_sku(
        (item.sku_id, item.sku_code, item.quantity) for item in order.items
    )
    for sku_id, sku_code, quantity in lines:
        result = await db.execute(
            update(ProductSku)
            .where(ProductSku.id == sku_id, ProductSku.inventory >= quantity)
            .values(inventory=ProductSku.inventory - quantity, updated_at=utc_now())
        )
        if result.rowcount == 0:
            available = (
                await db.execute(
                    select(ProductSku.inventory).where(ProductSku.id == sku_id)
                )
            ).scalar_one_or_none()
            if available is None:
                logger.warning(
                    "SKU %s no longer exists; skipping decrement of %d unit(s)",
                    sku_code,
                    quantity,
                    extra={
                        "extra_fields": {
                            "order_id": str(order.id),
                            "sku_id": str(sku_id),
                        }
                    },
                )
                continue
            raise InsufficientStock(sku_code, quantity, available)

        # Sold out: hide from the storefront
        await db.execute(
            update(ProductSku)
            .where(ProductSku.id == sku_id, ProductSku.inventory == 0)
            .values(is_active=False)
        )
        db.add(
            StockMovement(
                sku_id=sku_id,
                order_id=order.id,
                kind=StockMovementKind.SALE,
                quantity=-quantity,
                reason=f"Order {order.order_number}",
            )
        )
        if tasks is not None:
            tasks.touch_sku(sku_id)

    order.stock_decremented_at = utc_now()
    logger.info(
        "Decremented stock for order %s (%d SKU(s))",
        order.order_number,
        len(lines),
        extra={"extra_fields": {"order_id": str(order.id)}},
    )
    return True


async def _restocked_by_refunds(db: AsyncSession, order_id: uuid.UUID) -> dict:
    """Quantity per order item already put back by partial refunds."""
    rows = await db.execute(
        select(RefundItem.order_item_id, func.sum(RefundItem.quantity))
        .join(Refund, Refund.id == RefundItem.refund_id)
        .where(
            Refund.order_id == order_id,
            Refund.restocked_at.is_not(None),
            RefundItem.restock.is_(True),
        )
        .group_by(RefundItem.order_item_id)
    )
    return {item_id: int(total or 0) for item_id, total in rows.all()}


async def restore_for_order(
    db: AsyncSession,
    order: Order,
    *,
    reason: Optional[str] = None,
    tasks: Optional[PostCommitTasks] = None,
) -> int:
    """Put the order's quantities back into stock, at most once per order.

    Orders whose stock was never decremented are left alone. Units already
    returned through partial-refund restocks are not counted twice.

    Returns:
        Number of units restored (0 when nothing happened)
    """
    if order.stock_decremented_at is None:
        logger.debug("Order %s never decremented stock", order.order_number)
        return 0
    if order.stock_restored_at is not None:
        logger.info("Stock already restored for order %s", order.order_number)
        return 0

    await db.flush()
    already = await _restocked_by_refunds(db, order.id)
    lines = _quantities_by_sku(
        (item.sku_id, item.sku_code, item.quantity - already.get(item.id, 0))
        for item in order.items
    )

    restored = 0
    for sku_id, sku_code, quantity in lines:
        applied = await _increment(
            db,
            sku_id=sku_id,
            sku_code=sku_code,
            quantity=quantity,
            order_id=order.id,
            reason=reason or f"Order {order.order_number} restored",
            tasks=tasks,
        )
        if applied:
            restored += quantity

    order.stock_restored_at = utc_now()
    logger.info(
        "Restored %d unit(s) for order %s",
        restored,
        order.order_number,
        extra={"extra_fields": {"order_id": str(order.id)}},
    )
    return restored


async def restock_refund_items(
    db: AsyncSession,
    order: Order,
    refund: Refund,
    *,
    tasks: Optional[PostCommitTasks] = None,
) -> int:
    """Return the refund's ``restock`` items to inventory, once per refund."""
    if refund.restocked_at is not None:
        return 0
    if order.stock_decremented_at is None or order.stock_restored_at is not None:
        # Nothing out of stock for this order any more
        return 0

    order_items: dict[uuid.UUID, OrderItem] = {item.id: item for item in order.items}
    lines = _quantities_by_sku(
        (
            order_items[ri.order_item_id].sku_id,
            order_items[ri.order_item_id].sku_code,
            ri.quantity,
        )
        for ri in refund.items
        if ri.restock and ri.order_item_id in order_items
    )

    restored = 0
    for sku_id, sku_code, quantity in lines:
        applied = await _increment(
            db,
            sku_id=sku_id,
            sku_code=sku_code,
            quantity=quantity,
            order_id=order.id,
            reason=f"Refund {refund.id}",
            tasks=tasks,
        )
        if applied:
            restored += quantity

    refund.restocked_at = utc_now()
    return restored
