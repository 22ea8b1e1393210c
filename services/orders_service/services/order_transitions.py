"""Order transitions: locking, validated status changes and the audit trail."""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.notifications import TemplateKind
from services.orders_service.errors import (
    ConcurrentModification,
    InvalidTransition,
    OrderEngineError,
    OrderNotFound,
)
from services.orders_service.models import (
    FulfillmentStatus,
    Order,
    OrderHistory,
    OrderStatus,
    PaymentStatus,
    StatusField,
)
from services.orders_service.services.discount_ledger import redeem_discount
from services.orders_service.services.post_commit import PostCommitTasks
from services.orders_service.services.state_machine import (
    check_transition,
    coerce_status,
)
from services.orders_service.services.stock_ledger import (
    decrement_for_order,
    restore_for_order,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"

# Payment statuses only the processor's refund and dispute events may set
PROCESSOR_MIRRORED_STATUSES = frozenset(
    status.value
    for status in (
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
        PaymentStatus.DISPUTED,
        PaymentStatus.DISPUTE_WON,
        PaymentStatus.DISPUTE_LOST,
    )
)

# Lifecycle timestamp stamped when a status is entered
_TIMESTAMPS = {
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
    PaymentStatus.PAID: "paid_at",
    FulfillmentStatus.FULFILLED: "fulfilled_at",
}


# ---------------------------------------------------------------------------
# Loading and committing
# ---------------------------------------------------------------------------


async def lock_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    """Load an order for mutation with SELECT ... FOR UPDATE.

    Always reloads from the database so a caller never mutates a stale copy
    left in the identity map.
    """
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id, Order.deleted_at.is_(None))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


async def commit_order_changes(db: AsyncSession) -> None:
    """Commit, turning a lost version race into ConcurrentModification."""
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise ConcurrentModification(
            "Order was modified by another request; reload and retry"
        ) from e


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def current_statuses(order: Order) -> dict:
    return {
        StatusField.STATUS: order.status,
        StatusField.PAYMENT_STATUS: order.payment_status,
        StatusField.FULFILLMENT_STATUS: order.fulfillment_status,
    }


def apply_transition(
    db: AsyncSession,
    order: Order,
    field: StatusField,
    target,
    *,
    actor: str,
    reason: Optional[str] = None,
    tasks: Optional[PostCommitTasks] = None,
) -> OrderHistory:
    """Move one status field of ``order`` to ``target`` and log it.

    Validates the edge and the resulting status combination first; on
    failure raises InvalidTransition and leaves the order untouched. Does
    not flush or commit.
    """
    field = StatusField(field)
    current = order.get_status(field)
    try:
        target = coerce_status(field, target)
    except ValueError:
        raise InvalidTransition(
            field.value, current.value, str(target), "unknown status"
        ) from None

    problem = check_transition(field, current_statuses(order), target)
    if problem:
        raise InvalidTransition(field.value, current.value, target.value, problem)

    now = utc_now()
    setattr(order, field.value, target)
    stamp = _TIMESTAMPS.get(target)
    if stamp and getattr(order, stamp) is None:
        setattr(order, stamp, now)

    entry = OrderHistory(
        order_id=order.id,
        field=field,
        previous_value=current.value,
        new_value=target.value,
        actor=actor,
        reason=reason,
        created_at=now,
    )
    db.add(entry)

    if tasks is not None:
        tasks.touch_order(order.id, order.customer_id)

    logger.info(
        "Order %s %s: %s -> %s (%s)",
        order.order_number,
        field.value,
        current.value,
        target.value,
        actor,
        extra={"extra_fields": {"order_id": str(order.id), "actor": actor}},
    )
    return entry


async def transition_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    field: StatusField,
    target,
    *,
    actor: str,
    reason: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Order:
    """Admin entry point: one validated transition in its own transaction.

    Cancelling restores stock; manually marking a pending payment as paid
    takes stock and records the discount usage, same as a processor
    confirmation would. Refund and dispute payment statuses are refused
    here: they follow the processor's events, which carry the stock change.
    """
    tasks = PostCommitTasks()
    try:
        order = await lock_order(db, order_id)
        if expected_version is not None and order.version != expected_version:
            raise ConcurrentModification(
                f"Order {order.order_number} is at version {order.version}, "
                f"expected {expected_version}"
            )

        field = StatusField(field)
        if (
            field == StatusField.PAYMENT_STATUS
            and str(getattr(target, "value", target)) in PROCESSOR_MIRRORED_STATUSES
        ):
            raise InvalidTransition(
                field.value,
                order.payment_status.value,
                str(getattr(target, "value", target)),
                "processor-mirrored status",
            )

        apply_transition(
            db, order, field, target, actor=actor, reason=reason, tasks=tasks
        )

        if field == StatusField.STATUS and order.status == OrderStatus.CANCELLED:
            await restore_for_order(
                db, order, reason=reason or "Order cancelled", tasks=tasks
            )
            tasks.notify(order.id, TemplateKind.ORDER_CANCELLED, {"reason": reason})
        elif (
            field == StatusField.PAYMENT_STATUS
            and order.payment_status == PaymentStatus.PAID
        ):
            await decrement_for_order(db, order, tasks=tasks)
            await redeem_discount(db, order)
            tasks.notify(order.id, TemplateKind.ORDER_CONFIRMATION)

        await commit_order_changes(db)
    except Exception:
        await db.rollback()
        raise

    await tasks.dispatch()
    return order


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


@dataclass
class TransitionRequest:
    order_id: uuid.UUID
    field: StatusField
    target: str
    reason: Optional[str] = None
    expected_version: Optional[int] = None


@dataclass
class TransitionResult:
    order_id: uuid.UUID
    success: bool
    version: Optional[int] = None
    error: Optional[str] = None


async def transition_orders_bulk(
    session_factory: async_sessionmaker[AsyncSession],
    requests: list[TransitionRequest],
    *,
    actor: str,
) -> list[TransitionResult]:
    """Apply each request in its own transaction and report per-order results."""
    results: list[TransitionResult] = []
    for request in requests:
        async with session_factory() as db:
            try:
                order = await transition_order(
                    db,
                    request.order_id,
                    request.field,
                    request.target,
                    actor=actor,
                    reason=request.reason,
                    expected_version=request.expected_version,
                )
                results.append(
                    TransitionResult(
                        order_id=request.order_id, success=True, version=order.version
                    )
                )
            except OrderEngineError as e:
                results.append(
                    TransitionResult(
                        order_id=request.order_id, success=False, error=e.detail
                    )
                )
            except Exception as e:
                logger.error(
                    f"Bulk transition failed for order {request.order_id}: {e}",
                    exc_info=True,
                    extra={"extra_fields": {"order_id": str(request.order_id)}},
                )
                results.append(
                    TransitionResult(
                        order_id=request.order_id,
                        success=False,
                        error="Unexpected error",
                    )
                )
    return results


async def get_order_history(
    db: AsyncSession, order_id: uuid.UUID
) -> list[OrderHistory]:
    exists = (
        await db.execute(select(Order.id).where(Order.id == order_id))
    ).scalar_one_or_none()
    if exists is None:
        raise OrderNotFound(f"Order {order_id} not found")
    result = await db.execute(
        select(OrderHistory)
        .where(OrderHistory.order_id == order_id)
        .order_by(OrderHistory.created_at, OrderHistory.id)
    )
    return list(result.scalars().all())
