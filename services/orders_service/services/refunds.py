"""Refund requests: creation, admin review and submission to the processor.

Payment status never changes here. The order only moves to
partially_refunded / refunded when the processor's ``refund.completed``
event arrives (see payment_events).
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.notifications import TemplateKind
from services.orders_service.errors import (
    OrderEngineError,
    PaymentProcessorError,
    RefundNotAllowed,
    RefundNotFound,
)
from services.orders_service.models import (
    PaymentStatus,
    Refund,
    RefundItem,
    RefundReason,
    RefundStatus,
)
from services.orders_service.payment_client import PaymentProcessorClient
from services.orders_service.services.order_transitions import lock_order
from services.orders_service.services.post_commit import PostCommitTasks
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

CENT = Decimal("0.01")
ACTIVE_REFUND_STATES = (
    RefundStatus.PENDING,
    RefundStatus.APPROVED,
    RefundStatus.COMPLETED,
)
REQUESTABLE_PAYMENT_STATES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED}
)


@dataclass
class RefundLine:
    order_item_id: uuid.UUID
    quantity: int
    restock: bool = False


@dataclass
class RefundActionResult:
    refund_id: uuid.UUID
    success: bool
    status: Optional[RefundStatus] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def _lock_refund(db: AsyncSession, refund_id: uuid.UUID) -> Refund:
    result = await db.execute(
        select(Refund)
        .where(Refund.id == refund_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    refund = result.scalar_one_or_none()
    if refund is None:
        raise RefundNotFound(f"Refund {refund_id} not found")
    return refund


async def _refunded_quantities(db: AsyncSession, order_id: uuid.UUID) -> dict:
    rows = await db.execute(
        select(RefundItem.order_item_id, func.sum(RefundItem.quantity))
        .join(Refund, Refund.id == RefundItem.refund_id)
        .where(Refund.order_id == order_id, Refund.status.in_(ACTIVE_REFUND_STATES))
        .group_by(RefundItem.order_item_id)
    )
    return {item_id: int(total or 0) for item_id, total in rows.all()}


async def _committed_refund_total(db: AsyncSession, order_id: uuid.UUID) -> Decimal:
    total = (
        await db.execute(
            select(func.coalesce(func.sum(Refund.amount), 0)).where(
                Refund.order_id == order_id,
                Refund.status.in_(ACTIVE_REFUND_STATES),
            )
        )
    ).scalar_one()
    return Decimal(str(total)).quantize(Decimal("0.01"))


async def list_refunds(
    db: AsyncSession,
    *,
    status: Optional[RefundStatus] = None,
    order_id: Optional[uuid.UUID] = None,
    limit: int = 100,
) -> list[Refund]:
    query = select(Refund).order_by(Refund.created_at.desc()).limit(limit)
    if status is not None:
        query = query.where(Refund.status == status)
    if order_id is not None:
        query = query.where(Refund.order_id == order_id)
    return list((await db.execute(query)).scalars().all())


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


async def request_refund(
    db: AsyncSession,
    order_id: uuid.UUID,
    items: list[RefundLine],
    reason: RefundReason,
    *,
    actor: str,
    note: Optional[str] = None,
    amount: Optional[Decimal] = None,
) -> Refund:
    """Create a pending refund request for part or all of a paid order.

    Quantities are bounded by what is not already in an active refund, and
    the amount by what is left to refund on the order.
    """
    try:
        order = await lock_order(db, order_id)
        if order.payment_status not in REQUESTABLE_PAYMENT_STATES:
            raise RefundNotAllowed(
                f"Order {order.order_number} payment is {order.payment_status.value}"
            )

        order_items = {item.id: item for item in order.items}
        already = await _refunded_quantities(db, order.id)
        requested: dict[uuid.UUID, int] = {}
        refund_items: list[RefundItem] = []
        items_total = Decimal("0.00")

        for line in items:
            item = order_items.get(line.order_item_id)
            if item is None:
                raise RefundNotAllowed(
                    f"Item {line.order_item_id} is not part of order {order.order_number}"
                )
            if line.quantity <= 0:
                raise RefundNotAllowed("Refund quantity must be positive")
            requested[item.id] = requested.get(item.id, 0) + line.quantity
            refundable = item.quantity - already.get(item.id, 0)
            if requested[item.id] > refundable:
                raise RefundNotAllowed(
                    f"Only {refundable} unit(s) of {item.sku_code} can still be refunded"
                )
            line_amount = (item.unit_price * line.quantity).quantize(CENT)
            items_total += line_amount
            refund_items.append(
                RefundItem(
                    order_item_id=item.id,
                    quantity=line.quantity,
                    amount=line_amount,
                    restock=line.restock,
                )
            )

        refund_amount = (
            Decimal(amount).quantize(CENT) if amount is not None else items_total
        )
        if refund_amount <= 0:
            raise RefundNotAllowed("Refund amount must be positive")
        remaining = order.total - await _committed_refund_total(db, order.id)
        if refund_amount > remaining:
            raise RefundNotAllowed(
                f"Refund of {refund_amount} exceeds refundable balance {remaining}"
            )

        refund = Refund(
            order_id=order.id,
            amount=refund_amount,
            reason=RefundReason(reason),
            status=RefundStatus.PENDING,
            note=note,
            requested_by=actor,
            items=refund_items,
        )
        db.add(refund)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Refund %s requested for order %s (%s)",
        refund.id,
        order.order_number,
        refund.amount,
        extra={"extra_fields": {"order_id": str(order.id), "actor": actor}},
    )
    return refund


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


async def approve_refund(
    session_factory: async_sessionmaker[AsyncSession],
    refund_id: uuid.UUID,
    *,
    actor: str,
    client: PaymentProcessorClient,
) -> Refund:
    """Approve a pending refund and submit it to the processor.

    The approval commits before the processor is called so no row lock is
    held across the network. A processor error marks the refund failed and
    is returned in its ``failure_reason`` rather than raised.
    """
    async with session_factory() as db:
        try:
            refund = await _lock_refund(db, refund_id)
            if refund.status != RefundStatus.PENDING:
                raise RefundNotAllowed(
                    f"Refund {refund_id} is {refund.status.value}, not pending"
                )
            order = await lock_order(db, refund.order_id)
            if not order.payment_intent_id:
                raise RefundNotAllowed(
                    f"Order {order.order_number} has no processor payment to refund"
                )

            refund.status = RefundStatus.APPROVED
            refund.reviewed_by = actor
            refund.reviewed_at = utc_now()
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    payment_intent_id = order.payment_intent_id
    try:
        processor_refund = await client.create_refund(
            payment_intent_id=payment_intent_id,
            amount=refund.amount,
            refund_id=str(refund.id),
            reason=refund.reason.value,
        )
    except PaymentProcessorError as e:
        logger.error(
            f"Processor rejected refund {refund.id}: {e.detail}",
            extra={
                "extra_fields": {"order_id": str(order.id), "refund_id": str(refund.id)}
            },
        )
        tasks = PostCommitTasks()
        async with session_factory() as db:
            refund = await _lock_refund(db, refund_id)
            if refund.status == RefundStatus.APPROVED:
                refund.status = RefundStatus.FAILED
                refund.failure_reason = e.detail
                refund.processed_at = utc_now()
                tasks.notify(
                    refund.order_id,
                    TemplateKind.ADMIN_REFUND_FAILED,
                    {"refund_id": str(refund.id), "failure_reason": e.detail},
                )
            await db.commit()
        await tasks.dispatch()
        return refund

    async with session_factory() as db:
        refund = await _lock_refund(db, refund_id)
        if not refund.external_id:
            refund.external_id = processor_refund.external_id
        await db.commit()

    logger.info(
        "Refund %s submitted to processor as %s",
        refund.id,
        processor_refund.external_id,
        extra={"extra_fields": {"order_id": str(order.id), "actor": actor}},
    )
    return refund


async def reject_refund(
    db: AsyncSession,
    refund_id: uuid.UUID,
    *,
    actor: str,
    note: Optional[str] = None,
) -> Refund:
    try:
        refund = await _lock_refund(db, refund_id)
        if refund.status != RefundStatus.PENDING:
            raise RefundNotAllowed(
                f"Refund {refund_id} is {refund.status.value}, not pending"
            )
        refund.status = RefundStatus.REJECTED
        refund.reviewed_by = actor
        refund.reviewed_at = utc_now()
        if note:
            refund.note = f"{refund.note}\n{note}" if refund.note else note
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Refund %s rejected by %s", refund.id, actor)
    return refund


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


def _failure(refund_id: uuid.UUID, error: Exception) -> RefundActionResult:
    if isinstance(error, OrderEngineError):
        return RefundActionResult(refund_id=refund_id, success=False, error=error.detail)
    logger.error(
        f"Unexpected error reviewing refund {refund_id}: {error}",
        exc_info=error,
        extra={"extra_fields": {"refund_id": str(refund_id)}},
    )
    return RefundActionResult(
        refund_id=refund_id, success=False, error="Unexpected error"
    )


async def approve_refunds_bulk(
    session_factory: async_sessionmaker[AsyncSession],
    refund_ids: list[uuid.UUID],
    *,
    actor: str,
    client: PaymentProcessorClient,
) -> list[RefundActionResult]:
    """Approve each refund independently and report per-refund results."""
    results = []
    for refund_id in refund_ids:
        try:
            refund = await approve_refund(
                session_factory, refund_id, actor=actor, client=client
            )
        except Exception as e:
            results.append(_failure(refund_id, e))
            continue
        if refund.status == RefundStatus.FAILED:
            results.append(
                RefundActionResult(
                    refund_id=refund_id,
                    success=False,
                    status=refund.status,
                    error=refund.failure_reason,
                )
            )
        else:
            results.append(
                RefundActionResult(refund_id=refund_id, success=True, status=refund.status)
            )
    return results


async def reject_refunds_bulk(
    session_factory: async_sessionmaker[AsyncSession],
    refund_ids: list[uuid.UUID],
    *,
    actor: str,
    note: Optional[str] = None,
) -> list[RefundActionResult]:
    results = []
    for refund_id in refund_ids:
        async with session_factory() as db:
            try:
                refund = await reject_refund(db, refund_id, actor=actor, note=note)
            except Exception as e:
                results.append(_failure(refund_id, e))
                continue
        results.append(
            RefundActionResult(refund_id=refund_id, success=True, status=refund.status)
        )
    return results
