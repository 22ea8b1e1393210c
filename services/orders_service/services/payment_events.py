"""Payment event processor.

Applies processor webhook events to orders exactly once. The
``processed_payment_events`` row for an event id is inserted in the same
transaction as the state change it guards, so a duplicate delivery either
blocks on the unique key or finds the committed row and stops.

Payload fields read per event type (amounts are integer minor units):

- checkout.completed: payment_session_id, payment_intent_id, invoice_id
- payment.failed: failure_message
- dispute.*: dispute_id, amount, currency, reason, status, evidence_due_by
- refund.completed: refund_id, local_refund_id, amount
- refund.failed: refund_id, local_refund_id, failure_reason
"""

import enum
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from libs.common.datetime_utils import from_epoch, utc_now
from libs.common.logging import get_logger
from libs.common.notifications import TemplateKind
from services.orders_service.models import (
    Dispute,
    DisputeReason,
    DisputeStatus,
    FulfillmentStatus,
    Order,
    OrderStatus,
    PaymentEventType,
    PaymentStatus,
    ProcessedEventStatus,
    ProcessedPaymentEvent,
    Refund,
    RefundReason,
    RefundStatus,
    StatusField,
)
from services.orders_service.services.discount_ledger import redeem_discount
from services.orders_service.services.order_transitions import (
    apply_transition,
    commit_order_changes,
)
from services.orders_service.services.post_commit import PostCommitTasks
from services.orders_service.services.stock_ledger import (
    decrement_for_order,
    restock_refund_items,
    restore_for_order,
)
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

DISPUTABLE_PAYMENT_STATES = frozenset(
    {
        PaymentStatus.PAID,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.DISPUTE_WON,
        PaymentStatus.DISPUTE_LOST,
    }
)
REFUNDABLE_PAYMENT_STATES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.DISPUTED}
)

DISPUTE_STATUS_MAP = {
    "needs_response": DisputeStatus.NEEDS_RESPONSE,
    "warning_needs_response": DisputeStatus.NEEDS_RESPONSE,
    "under_review": DisputeStatus.UNDER_REVIEW,
    "warning_under_review": DisputeStatus.UNDER_REVIEW,
    "won": DisputeStatus.WON,
    "warning_closed": DisputeStatus.WON,
    "lost": DisputeStatus.LOST,
    "charge_refunded": DisputeStatus.CHARGE_REFUNDED,
}


class EventOutcome(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_PROCESSED = "already_processed"
    REJECTED = "rejected"


@dataclass
class EventResult:
    outcome: EventOutcome
    order_id: Optional[uuid.UUID] = None
    detail: Optional[str] = None


class EventRejected(Exception):
    """Precondition failed. Raised before any state is touched."""

    def __init__(self, detail: str, order_id: Optional[uuid.UUID] = None):
        super().__init__(detail)
        self.detail = detail
        self.order_id = order_id


@dataclass
class EventContext:
    db: AsyncSession
    event_id: str
    event_type: str
    reference: Optional[str]
    payload: dict[str, Any]
    tasks: PostCommitTasks

    @property
    def actor(self) -> str:
        return f"webhook:{self.event_id}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def minor_to_decimal(value) -> Optional[Decimal]:
    """Processor amounts are integer minor units (cents)."""
    if value is None or value == "":
        return None
    return (Decimal(int(value)) / Decimal(100)).quantize(Decimal("0.01"))


def map_dispute_reason(value: Optional[str]) -> DisputeReason:
    try:
        return DisputeReason((value or "").lower())
    except ValueError:
        return DisputeReason.GENERAL


async def resolve_order(db: AsyncSession, reference: Optional[str]) -> Optional[Order]:
    """Find and lock the order an event refers to.

    The reference may be the order id, its order number, or a processor
    session / payment intent id.
    """
    if not reference:
        return None
    reference = str(reference)
    conditions = [
        Order.order_number == reference,
        Order.payment_session_id == reference,
        Order.payment_intent_id == reference,
    ]
    try:
        conditions.append(Order.id == uuid.UUID(str(reference)))
    except ValueError:
        pass

    result = await db.execute(
        select(Order)
        .where(or_(*conditions), Order.deleted_at.is_(None))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _require_order(ctx: EventContext) -> Order:
    reference = (
        ctx.reference
        or ctx.payload.get("payment_intent_id")
        or ctx.payload.get("payment_session_id")
    )
    order = await resolve_order(ctx.db, reference)
    if order is None:
        raise EventRejected(f"no order matches reference {reference!r}")
    return order


async def _find_dispute(ctx: EventContext, order: Order) -> Optional[Dispute]:
    external_id = ctx.payload.get("dispute_id")
    if not external_id:
        return None
    result = await ctx.db.execute(
        select(Dispute).where(
            Dispute.external_id == external_id, Dispute.order_id == order.id
        )
    )
    return result.scalar_one_or_none()


async def _find_refund(ctx: EventContext, order: Order) -> Optional[Refund]:
    conditions = []
    if ctx.payload.get("refund_id"):
        conditions.append(Refund.external_id == ctx.payload["refund_id"])
    if ctx.payload.get("local_refund_id"):
        try:
            conditions.append(Refund.id == uuid.UUID(str(ctx.payload["local_refund_id"])))
        except ValueError:
            pass
    if not conditions:
        return None
    result = await ctx.db.execute(
        select(Refund)
        .where(Refund.order_id == order.id, or_(*conditions))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _refunded_total(db: AsyncSession, order_id: uuid.UUID) -> Decimal:
    total = (
        await db.execute(
            select(func.coalesce(func.sum(Refund.amount), 0)).where(
                Refund.order_id == order_id,
                Refund.status == RefundStatus.COMPLETED,
            )
        )
    ).scalar_one()
    return Decimal(str(total)).quantize(Decimal("0.01"))


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _checkout_completed(ctx: EventContext) -> tuple[Order, str]:
    order = await _require_order(ctx)
    if (
        order.status != OrderStatus.PENDING
        or order.payment_status != PaymentStatus.PENDING
    ):
        raise EventRejected(
            f"order is {order.status.value}/{order.payment_status.value}",
            order.id,
        )

    payload = ctx.payload
    order.payment_session_id = order.payment_session_id or payload.get(
        "payment_session_id"
    )
    order.payment_intent_id = order.payment_intent_id or payload.get(
        "payment_intent_id"
    )
    order.invoice_id = order.invoice_id or payload.get("invoice_id")

    apply_transition(
        ctx.db,
        order,
        StatusField.PAYMENT_STATUS,
        PaymentStatus.PAID,
        actor=ctx.actor,
        reason="Payment confirmed by processor",
        tasks=ctx.tasks,
    )
    apply_transition(
        ctx.db,
        order,
        StatusField.STATUS,
        OrderStatus.PROCESSING,
        actor=ctx.actor,
        reason="Payment confirmed by processor",
        tasks=ctx.tasks,
    )
    await decrement_for_order(ctx.db, order, tasks=ctx.tasks)
    await redeem_discount(ctx.db, order)
    ctx.tasks.notify(order.id, TemplateKind.ORDER_CONFIRMATION)
    return order, "payment confirmed"


async def _payment_failed(ctx: EventContext) -> tuple[Order, str]:
    order = await _require_order(ctx)
    if (
        order.status != OrderStatus.PENDING
        or order.payment_status != PaymentStatus.PENDING
    ):
        raise EventRejected(
            f"order is {order.status.value}/{order.payment_status.value}",
            order.id,
        )

    message = ctx.payload.get("failure_message")
    apply_transition(
        ctx.db,
        order,
        StatusField.PAYMENT_STATUS,
        PaymentStatus.FAILED,
        actor=ctx.actor,
        reason=message or "Payment failed",
        tasks=ctx.tasks,
    )
    ctx.tasks.notify(
        order.id, TemplateKind.PAYMENT_FAILED, {"failure_message": message}
    )
    return order, "payment failed"


async def _dispute_opened(ctx: EventContext) -> tuple[Order, str]:
    order = await _require_order(ctx)
    payload = ctx.payload
    external_id = payload.get("dispute_id")
    if not external_id:
        raise EventRejected("dispute event without dispute_id", order.id)
    if (
        order.payment_status not in DISPUTABLE_PAYMENT_STATES
        and order.payment_status != PaymentStatus.DISPUTED
    ):
        raise EventRejected(
            f"payment is {order.payment_status.value}", order.id
        )

    dispute = await _find_dispute(ctx, order)
    amount = minor_to_decimal(payload.get("amount"))
    if dispute is None:
        dispute = Dispute(
            order_id=order.id,
            external_id=external_id,
            amount=amount if amount is not None else order.total,
            currency=(payload.get("currency") or order.currency).upper(),
            reason=map_dispute_reason(payload.get("reason")),
            status=DISPUTE_STATUS_MAP.get(
                payload.get("status"), DisputeStatus.NEEDS_RESPONSE
            ),
            evidence_due_by=from_epoch(payload.get("evidence_due_by")),
        )
        ctx.db.add(dispute)
    else:
        # Reopened, or a redelivery under a new event id
        if amount is not None:
            dispute.amount = amount
        dispute.status = DISPUTE_STATUS_MAP.get(
            payload.get("status"), DisputeStatus.NEEDS_RESPONSE
        )
        dispute.evidence_due_by = (
            from_epoch(payload.get("evidence_due_by")) or dispute.evidence_due_by
        )
        dispute.resolved_at = None

    if order.payment_status != PaymentStatus.DISPUTED:
        apply_transition(
            ctx.db,
            order,
            StatusField.PAYMENT_STATUS,
            PaymentStatus.DISPUTED,
            actor=ctx.actor,
            reason=f"Dispute opened: {dispute.reason.value}",
            tasks=ctx.tasks,
        )
    else:
        ctx.tasks.touch_order(order.id, order.customer_id)

    ctx.tasks.notify(
        order.id,
        TemplateKind.ADMIN_DISPUTE_ALERT,
        {
            "dispute_id": external_id,
            "amount": str(dispute.amount),
            "reason": dispute.reason.value,
        },
    )
    return order, f"dispute {external_id} opened"


async def _dispute_updated(ctx: EventContext) -> tuple[Order, str]:
    order = await _require_order(ctx)
    dispute = await _find_dispute(ctx, order)
    if dispute is None:
        raise EventRejected("unknown dispute", order.id)
    if dispute.resolved_at is not None:
        raise EventRejected(f"dispute {dispute.external_id} already closed", order.id)

    payload = ctx.payload
    status_value = DISPUTE_STATUS_MAP.get(payload.get("status"))
    if status_value in (DisputeStatus.NEEDS_RESPONSE, DisputeStatus.UNDER_REVIEW):
        dispute.status = status_value
    due = from_epoch(payload.get("evidence_due_by"))
    if due is not None:
        dispute.evidence_due_by = due
    amount = minor_to_decimal(payload.get("amount"))
    if amount is not None:
        dispute.amount = amount
    if payload.get("reason"):
        dispute.reason = map_dispute_reason(payload.get("reason"))

    ctx.tasks.touch_order(order.id, order.customer_id)
    return order, f"dispute {dispute.external_id} updated"


async def _dispute_closed(ctx: EventContext) -> tuple[Order, str]:
    order = await _require_order(ctx)
    dispute = await _find_dispute(ctx, order)
    if dispute is None:
        raise EventRejected("unknown dispute", order.id)
    if order.payment_status != PaymentStatus.DISPUTED:
        raise EventRejected(f"payment is {order.payment_status.value}", order.id)

    outcome = DISPUTE_STATUS_MAP.get(ctx.payload.get("status"))
    target = {
        DisputeStatus.WON: PaymentStatus.DISPUTE_WON,
        DisputeStatus.LOST: PaymentStatus.DISPUTE_LOST,
        DisputeStatus.CHARGE_REFUNDED: PaymentStatus.REFUNDED,
    }.get(outcome)
    if target is None:
        raise EventRejected(
            f"unexpected closing status {ctx.payload.get('status')!r}", order.id
        )

    dispute.status = outcome
    dispute.resolved_at = utc_now()
    apply_transition(
        ctx.db,
        order,
        StatusField.PAYMENT_STATUS,
        target,
        actor=ctx.actor,
        reason=f"Dispute {dispute.external_id} closed: {outcome.value}",
        tasks=ctx.tasks,
    )

    if (
        target != PaymentStatus.DISPUTE_WON
        and order.fulfillment_status == FulfillmentStatus.UNFULFILLED
    ):
        await restore_for_order(
            ctx.db,
            order,
            reason=f"Dispute {dispute.external_id} {outcome.value}",
            tasks=ctx.tasks,
        )
    return order, f"dispute {dispute.external_id} {outcome.value}"


async def _refund_completed(ctx: EventContext) -> tuple[Order, str]:
    order = await _require_order(ctx)
    if order.payment_status not in REFUNDABLE_PAYMENT_STATES:
        raise EventRejected(f"payment is {order.payment_status.value}", order.id)

    payload = ctx.payload
    refund = await _find_refund(ctx, order)
    if refund is not None and refund.status == RefundStatus.COMPLETED:
        raise EventRejected(f"refund {refund.id} already completed", order.id)
    if refund is not None and refund.status in (
        RefundStatus.PENDING,
        RefundStatus.REJECTED,
    ):
        raise EventRejected(
            f"refund {refund.id} is {refund.status.value}", order.id
        )

    amount = minor_to_decimal(payload.get("amount"))
    already_refunded = await _refunded_total(ctx.db, order.id)
    remaining = max(order.total - already_refunded, Decimal("0.00"))

    if refund is None:
        # Issued directly at the processor; mirror it locally
        refund = Refund(
            order_id=order.id,
            external_id=payload.get("refund_id"),
            amount=amount if amount is not None else remaining,
            reason=RefundReason.OTHER,
            requested_by=ctx.actor,
        )
        ctx.db.add(refund)
    elif amount is not None:
        refund.amount = amount
    if payload.get("refund_id") and not refund.external_id:
        refund.external_id = payload["refund_id"]

    refund.status = RefundStatus.COMPLETED
    refund.processed_at = utc_now()
    refund.failure_reason = None

    is_full = already_refunded + refund.amount >= order.total
    if is_full:
        apply_transition(
            ctx.db,
            order,
            StatusField.PAYMENT_STATUS,
            PaymentStatus.REFUNDED,
            actor=ctx.actor,
            reason="Full refund completed",
            tasks=ctx.tasks,
        )
        if order.fulfillment_status == FulfillmentStatus.UNFULFILLED:
            await restore_for_order(
                ctx.db, order, reason="Order refunded", tasks=ctx.tasks
            )
        detail = "full refund"
    else:
        if order.payment_status == PaymentStatus.PAID:
            apply_transition(
                ctx.db,
                order,
                StatusField.PAYMENT_STATUS,
                PaymentStatus.PARTIALLY_REFUNDED,
                actor=ctx.actor,
                reason=f"Partial refund of {refund.amount}",
                tasks=ctx.tasks,
            )
        else:
            ctx.tasks.touch_order(order.id, order.customer_id)
        await restock_refund_items(ctx.db, order, refund, tasks=ctx.tasks)
        detail = "partial refund"

    ctx.tasks.notify(
        order.id,
        TemplateKind.REFUND_COMPLETED,
        {"amount": str(refund.amount), "full": is_full},
    )
    return order, detail


async def _refund_failed(ctx: EventContext) -> tuple[Order, str]:
    order = await _require_order(ctx)
    refund = await _find_refund(ctx, order)
    if refund is None:
        raise EventRejected("unknown refund", order.id)
    if refund.status != RefundStatus.APPROVED:
        raise EventRejected(f"refund {refund.id} is {refund.status.value}", order.id)

    refund.status = RefundStatus.FAILED
    refund.failure_reason = ctx.payload.get("failure_reason") or "Refund failed"
    refund.processed_at = utc_now()
    ctx.tasks.touch_order(order.id, order.customer_id)
    ctx.tasks.notify(
        order.id,
        TemplateKind.ADMIN_REFUND_FAILED,
        {"refund_id": str(refund.id), "failure_reason": refund.failure_reason},
    )
    return order, f"refund {refund.id} failed"


HANDLERS: dict[str, Callable[[EventContext], Awaitable[tuple[Order, str]]]] = {
    PaymentEventType.CHECKOUT_COMPLETED.value: _checkout_completed,
    PaymentEventType.PAYMENT_FAILED.value: _payment_failed,
    PaymentEventType.DISPUTE_OPENED.value: _dispute_opened,
    PaymentEventType.DISPUTE_UPDATED.value: _dispute_updated,
    PaymentEventType.DISPUTE_CLOSED.value: _dispute_closed,
    PaymentEventType.REFUND_COMPLETED.value: _refund_completed,
    PaymentEventType.REFUND_FAILED.value: _refund_failed,
}


# ---------------------------------------------------------------------------
# Idempotency record
# ---------------------------------------------------------------------------


async def _claim_event(
    db: AsyncSession,
    event_id: str,
    event_type: str,
    order_reference: Optional[str],
) -> Optional[ProcessedPaymentEvent]:
    """Insert the event row, or re-claim it if an earlier attempt failed.

    Returns None when the event was already handled.
    """
    record = ProcessedPaymentEvent(
        event_id=event_id,
        event_type=event_type,
        order_reference=order_reference,
        status=ProcessedEventStatus.COMPLETED,
        attempts=1,
    )
    db.add(record)
    try:
        await db.flush()
        return record
    except IntegrityError:
        await db.rollback()

    result = await db.execute(
        select(ProcessedPaymentEvent)
        .where(ProcessedPaymentEvent.event_id == event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    existing = result.scalar_one_or_none()
    if existing is None or existing.status != ProcessedEventStatus.FAILED:
        return None

    existing.attempts += 1
    existing.status = ProcessedEventStatus.COMPLETED
    existing.error_message = None
    return existing


async def _record_failure(
    session_factory: async_sessionmaker[AsyncSession],
    event_id: str,
    event_type: str,
    order_reference: Optional[str],
    error: str,
) -> None:
    async with session_factory() as db:
        try:
            result = await db.execute(
                select(ProcessedPaymentEvent)
                .where(ProcessedPaymentEvent.event_id == event_id)
                .with_for_update()
            )
            record = result.scalar_one_or_none()
            if record is None:
                db.add(
                    ProcessedPaymentEvent(
                        event_id=event_id,
                        event_type=event_type,
                        order_reference=order_reference,
                        status=ProcessedEventStatus.FAILED,
                        attempts=1,
                        error_message=error,
                        processed_at=utc_now(),
                    )
                )
            elif record.status == ProcessedEventStatus.FAILED:
                record.attempts += 1
                record.error_message = error
                record.processed_at = utc_now()
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error(
                f"Could not record failure of payment event {event_id}: {e}",
                extra={"extra_fields": {"event_id": event_id}},
            )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def apply_payment_event(
    session_factory: async_sessionmaker[AsyncSession],
    event_id: str,
    event_type: str,
    order_reference: Optional[str],
    payload: Optional[dict[str, Any]] = None,
) -> EventResult:
    """Apply one processor event at most once.

    Returns ``already_processed`` for duplicates and ``rejected`` when the
    order is not in a state the event applies to. Unexpected errors roll
    everything back, mark the event failed so a redelivery retries it, and
    propagate.
    """
    log_fields = {"event_id": event_id, "event_type": event_type}
    if order_reference:
        log_fields["order_reference"] = order_reference
    tasks = PostCommitTasks()

    async with session_factory() as db:
        try:
            record = await _claim_event(db, event_id, event_type, order_reference)
            if record is None:
                await db.rollback()
                logger.info(
                    "Payment event %s already processed",
                    event_id,
                    extra={"extra_fields": log_fields},
                )
                return EventResult(EventOutcome.ALREADY_PROCESSED)

            ctx = EventContext(
                db=db,
                event_id=event_id,
                event_type=event_type,
                reference=order_reference,
                payload=payload or {},
                tasks=tasks,
            )
            handler = HANDLERS.get(event_type)
            try:
                if handler is None:
                    raise EventRejected(f"unhandled event type {event_type}")
                order, detail = await handler(ctx)
            except EventRejected as rejection:
                record.status = ProcessedEventStatus.SKIPPED
                record.outcome = rejection.detail
                record.processed_at = utc_now()
                await db.commit()
                logger.info(
                    "Payment event %s rejected: %s",
                    event_id,
                    rejection.detail,
                    extra={"extra_fields": log_fields},
                )
                return EventResult(
                    EventOutcome.REJECTED,
                    order_id=rejection.order_id,
                    detail=rejection.detail,
                )

            record.status = ProcessedEventStatus.COMPLETED
            record.outcome = detail
            record.processed_at = utc_now()
            await commit_order_changes(db)
        except Exception as e:
            await db.rollback()
            logger.error(
                f"Payment event {event_id} failed: {e}",
                exc_info=True,
                extra={"extra_fields": log_fields},
            )
            await _record_failure(
                session_factory, event_id, event_type, order_reference, str(e)
            )
            raise

    await tasks.dispatch()
    logger.info(
        "Payment event %s applied to order %s: %s",
        event_id,
        order.order_number,
        detail,
        extra={"extra_fields": {**log_fields, "order_id": str(order.id)}},
    )
    return EventResult(EventOutcome.APPLIED, order_id=order.id, detail=detail)
