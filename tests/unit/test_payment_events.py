"""Unit tests for the payment event processor.

Events are applied through apply_payment_event with the test session
factory, exactly as the webhook route does. Assertions reload state through
db_session with populate_existing so they see what the processor committed.
"""

import uuid
from decimal import Decimal

import pytest
from libs.common.notifications import TemplateKind
from services.orders_service.errors import InsufficientStock
from services.orders_service.models import (
    Dispute,
    DisputeReason,
    DisputeStatus,
    Order,
    OrderHistory,
    OrderStatus,
    PaymentStatus,
    ProcessedEventStatus,
    ProcessedPaymentEvent,
    ProductSku,
    Refund,
    RefundStatus,
    StatusField,
)
from services.orders_service.services import payment_events
from services.orders_service.services.payment_events import (
    EventOutcome,
    apply_payment_event,
)
from sqlalchemy import select
from tests.factories import OrderFactory, ProductSkuFactory, RefundFactory


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:16]}"


async def _pending_order(db, *, inventory=5, quantity=2, **overrides):
    sku = ProductSkuFactory.create(inventory=inventory, price=Decimal("25.00"))
    order = OrderFactory.create(lines=[(sku, quantity)], **overrides)
    db.add_all([sku, order])
    await db.commit()
    return sku, order


async def _checkout_completed(session_factory, order, event_id=None, intent=None):
    return await apply_payment_event(
        session_factory,
        event_id or _event_id(),
        "checkout.completed",
        str(order.id),
        {
            "payment_session_id": f"cs_{order.id.hex[:12]}",
            "payment_intent_id": intent or f"pi_{order.id.hex[:12]}",
            "invoice_id": "in_123",
        },
    )


async def _reload_order(db, order_id) -> Order:
    return await db.get(Order, order_id, populate_existing=True)


async def _inventory(db, sku_id) -> int:
    return (await db.get(ProductSku, sku_id, populate_existing=True)).inventory


async def _history(db, order_id) -> list[OrderHistory]:
    result = await db.execute(
        select(OrderHistory)
        .where(OrderHistory.order_id == order_id)
        .order_by(OrderHistory.created_at, OrderHistory.id)
    )
    return list(result.scalars().all())


async def _event_record(db, event_id) -> ProcessedPaymentEvent:
    result = await db.execute(
        select(ProcessedPaymentEvent)
        .where(ProcessedPaymentEvent.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# checkout.completed
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_completed_confirms_order(
    db_session, session_factory, fake_notifications
):
    """2 units of a SKU with stock 5: stock 3, paid/processing, one row per field."""
    sku, order = await _pending_order(db_session, inventory=5, quantity=2)

    result = await _checkout_completed(session_factory, order)

    assert result.outcome == EventOutcome.APPLIED
    assert result.order_id == order.id
    assert await _inventory(db_session, sku.id) == 3

    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.PAID
    assert order.status == OrderStatus.PROCESSING
    assert order.paid_at is not None
    assert order.payment_intent_id == f"pi_{order.id.hex[:12]}"
    assert order.stock_decremented_at is not None

    history = await _history(db_session, order.id)
    assert sorted(h.field for h in history) == sorted(
        [StatusField.PAYMENT_STATUS, StatusField.STATUS]
    )
    assert all(h.actor.startswith("webhook:evt_") for h in history)
    assert fake_notifications.kinds_for(order.id) == [TemplateKind.ORDER_CONFIRMATION]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_delivery_is_applied_once(db_session, session_factory):
    """Same event id twice: second is already_processed, stock taken once."""
    sku, order = await _pending_order(db_session, inventory=5, quantity=2)
    event_id = _event_id()

    first = await _checkout_completed(session_factory, order, event_id=event_id)
    second = await _checkout_completed(session_factory, order, event_id=event_id)

    assert first.outcome == EventOutcome.APPLIED
    assert second.outcome == EventOutcome.ALREADY_PROCESSED
    assert await _inventory(db_session, sku.id) == 3
    assert len(await _history(db_session, order.id)) == 2
    record = await _event_record(db_session, event_id)
    assert record.status == ProcessedEventStatus.COMPLETED
    assert record.attempts == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_new_event_id_for_paid_order_is_rejected(db_session, session_factory):
    """A different event id cannot pay the order twice."""
    sku, order = await _pending_order(db_session)
    await _checkout_completed(session_factory, order)

    event_id = _event_id()
    result = await _checkout_completed(session_factory, order, event_id=event_id)

    assert result.outcome == EventOutcome.REJECTED
    assert "processing/paid" in result.detail
    assert await _inventory(db_session, sku.id) == 3
    record = await _event_record(db_session, event_id)
    assert record.status == ProcessedEventStatus.SKIPPED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_completed_resolves_by_order_number(db_session, session_factory):
    _, order = await _pending_order(db_session)

    result = await apply_payment_event(
        session_factory, _event_id(), "checkout.completed", order.order_number, {}
    )

    assert result.outcome == EventOutcome.APPLIED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_order_is_rejected(session_factory):
    result = await apply_payment_event(
        session_factory, _event_id(), "checkout.completed", "ORD-MISSING", {}
    )
    assert result.outcome == EventOutcome.REJECTED
    assert result.order_id is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_non_string_payment_intent_reference_is_rejected(session_factory):
    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "refund.completed",
        None,
        {"payment_intent_id": 12345},
    )
    assert result.outcome == EventOutcome.REJECTED
    assert result.order_id is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_completed_short_of_stock_fails_and_rolls_back(
    db_session, session_factory
):
    """Stock sold out since checkout: nothing is applied and the event is failed."""
    sku, order = await _pending_order(db_session, inventory=1, quantity=2)
    event_id = _event_id()

    with pytest.raises(InsufficientStock):
        await _checkout_completed(session_factory, order, event_id=event_id)

    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.PENDING
    assert await _inventory(db_session, sku.id) == 1
    assert await _history(db_session, order.id) == []
    record = await _event_record(db_session, event_id)
    assert record.status == ProcessedEventStatus.FAILED
    assert "Insufficient stock" in record.error_message


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_event_is_retried_on_redelivery(
    db_session, session_factory, monkeypatch
):
    sku, order = await _pending_order(db_session)
    event_id = _event_id()
    real_redeem = payment_events.redeem_discount

    async def broken_redeem(db, order):
        raise RuntimeError("database went away")

    monkeypatch.setattr(payment_events, "redeem_discount", broken_redeem)
    with pytest.raises(RuntimeError):
        await _checkout_completed(session_factory, order, event_id=event_id)

    record = await _event_record(db_session, event_id)
    assert record.status == ProcessedEventStatus.FAILED
    assert record.attempts == 1
    assert await _inventory(db_session, sku.id) == 5

    monkeypatch.setattr(payment_events, "redeem_discount", real_redeem)
    result = await _checkout_completed(session_factory, order, event_id=event_id)

    assert result.outcome == EventOutcome.APPLIED
    record = await _event_record(db_session, event_id)
    assert record.status == ProcessedEventStatus.COMPLETED
    assert record.attempts == 2
    assert record.error_message is None
    assert await _inventory(db_session, sku.id) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_event_type_is_skipped(session_factory, db_session):
    _, order = await _pending_order(db_session)
    event_id = _event_id()

    result = await apply_payment_event(
        session_factory, event_id, "customer.updated", str(order.id), {}
    )

    assert result.outcome == EventOutcome.REJECTED
    record = await _event_record(db_session, event_id)
    assert record.status == ProcessedEventStatus.SKIPPED
    assert "unhandled event type" in record.outcome


# ---------------------------------------------------------------------------
# payment.failed
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_payment_failed(db_session, session_factory, fake_notifications):
    sku, order = await _pending_order(db_session)

    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "payment.failed",
        str(order.id),
        {"failure_message": "card_declined"},
    )

    assert result.outcome == EventOutcome.APPLIED
    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.FAILED
    assert order.status == OrderStatus.PENDING
    assert await _inventory(db_session, sku.id) == 5
    history = await _history(db_session, order.id)
    assert [(h.field, h.new_value, h.reason) for h in history] == [
        (StatusField.PAYMENT_STATUS, "failed", "card_declined")
    ]
    assert fake_notifications.kinds_for(order.id) == [TemplateKind.PAYMENT_FAILED]


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_full_refund_before_fulfillment_restores_stock(
    db_session, session_factory, fake_notifications
):
    """Paid order refunded in full before shipping: stock back to 5, refunded."""
    sku, order = await _pending_order(db_session, inventory=5, quantity=2)
    await _checkout_completed(session_factory, order, intent="pi_full")

    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "refund.completed",
        None,
        {"payment_intent_id": "pi_full", "refund_id": "re_full", "amount": 5000},
    )

    assert result.outcome == EventOutcome.APPLIED
    assert result.detail == "full refund"
    assert await _inventory(db_session, sku.id) == 5
    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.REFUNDED
    assert order.stock_restored_at is not None

    refund = (
        await db_session.execute(select(Refund).where(Refund.order_id == order.id))
    ).scalar_one()
    assert refund.status == RefundStatus.COMPLETED
    assert refund.external_id == "re_full"
    assert refund.amount == Decimal("50.00")
    assert TemplateKind.REFUND_COMPLETED in fake_notifications.kinds_for(order.id)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_partial_refund_restocks_flagged_items(db_session, session_factory):
    sku, order = await _pending_order(db_session, inventory=5, quantity=2)
    await _checkout_completed(session_factory, order)
    refund = RefundFactory.create(
        order,
        items=[(order.items[0], 1, True)],
        status=RefundStatus.APPROVED,
        external_id="re_part",
    )
    db_session.add(refund)
    await db_session.commit()

    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "refund.completed",
        str(order.id),
        {"refund_id": "re_part", "amount": 2500},
    )

    assert result.detail == "partial refund"
    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED
    assert await _inventory(db_session, sku.id) == 4
    refund = await db_session.get(Refund, refund.id, populate_existing=True)
    assert refund.status == RefundStatus.COMPLETED
    assert refund.restocked_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_for_unpaid_order_is_rejected(db_session, session_factory):
    _, order = await _pending_order(db_session)

    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "refund.completed",
        str(order.id),
        {"refund_id": "re_x", "amount": 100},
    )

    assert result.outcome == EventOutcome.REJECTED
    refunds = (
        await db_session.execute(select(Refund).where(Refund.order_id == order.id))
    ).all()
    assert refunds == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_failed_marks_approved_refund(
    db_session, session_factory, fake_notifications
):
    _, order = await _pending_order(db_session)
    await _checkout_completed(session_factory, order)
    refund = RefundFactory.create(
        order, status=RefundStatus.APPROVED, external_id="re_fail"
    )
    db_session.add(refund)
    await db_session.commit()

    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "refund.failed",
        str(order.id),
        {"refund_id": "re_fail", "failure_reason": "expired_or_canceled_card"},
    )

    assert result.outcome == EventOutcome.APPLIED
    refund = await db_session.get(Refund, refund.id, populate_existing=True)
    assert refund.status == RefundStatus.FAILED
    assert refund.failure_reason == "expired_or_canceled_card"
    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.PAID
    assert TemplateKind.ADMIN_REFUND_FAILED in fake_notifications.kinds_for(order.id)


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


async def _open_dispute(session_factory, order, dispute_id="dp_1", **payload):
    return await apply_payment_event(
        session_factory,
        _event_id(),
        "dispute.opened",
        str(order.id),
        {
            "dispute_id": dispute_id,
            "amount": 5000,
            "currency": "eur",
            "reason": "fraudulent",
            "status": "needs_response",
            "evidence_due_by": 1893456000,
            **payload,
        },
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_dispute_opened_marks_payment_disputed(
    db_session, session_factory, fake_notifications
):
    _, order = await _pending_order(db_session)
    await _checkout_completed(session_factory, order)

    result = await _open_dispute(session_factory, order)

    assert result.outcome == EventOutcome.APPLIED
    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.DISPUTED
    dispute = (
        await db_session.execute(select(Dispute).where(Dispute.order_id == order.id))
    ).scalar_one()
    assert dispute.external_id == "dp_1"
    assert dispute.amount == Decimal("50.00")
    assert dispute.currency == "EUR"
    assert dispute.reason == DisputeReason.FRAUDULENT
    assert dispute.status == DisputeStatus.NEEDS_RESPONSE
    assert dispute.evidence_due_by is not None
    assert TemplateKind.ADMIN_DISPUTE_ALERT in fake_notifications.kinds_for(order.id)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_dispute_on_unpaid_order_is_rejected(db_session, session_factory):
    _, order = await _pending_order(db_session)

    result = await _open_dispute(session_factory, order)

    assert result.outcome == EventOutcome.REJECTED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_dispute_updated_mirrors_status_without_transition(
    db_session, session_factory
):
    _, order = await _pending_order(db_session)
    await _checkout_completed(session_factory, order)
    await _open_dispute(session_factory, order)
    rows_before = len(await _history(db_session, order.id))

    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "dispute.updated",
        str(order.id),
        {"dispute_id": "dp_1", "status": "under_review"},
    )

    assert result.outcome == EventOutcome.APPLIED
    dispute = (
        await db_session.execute(
            select(Dispute)
            .where(Dispute.external_id == "dp_1")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert dispute.status == DisputeStatus.UNDER_REVIEW
    assert len(await _history(db_session, order.id)) == rows_before


@pytest.mark.asyncio
@pytest.mark.unit
async def test_dispute_lost_restores_unfulfilled_stock(db_session, session_factory):
    sku, order = await _pending_order(db_session, inventory=5, quantity=2)
    await _checkout_completed(session_factory, order)
    await _open_dispute(session_factory, order)

    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "dispute.closed",
        str(order.id),
        {"dispute_id": "dp_1", "status": "lost"},
    )

    assert result.outcome == EventOutcome.APPLIED
    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.DISPUTE_LOST
    assert await _inventory(db_session, sku.id) == 5
    dispute = (
        await db_session.execute(
            select(Dispute)
            .where(Dispute.external_id == "dp_1")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert dispute.status == DisputeStatus.LOST
    assert dispute.resolved_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_dispute_won_keeps_stock_out(db_session, session_factory):
    sku, order = await _pending_order(db_session, inventory=5, quantity=2)
    await _checkout_completed(session_factory, order)
    await _open_dispute(session_factory, order)

    await apply_payment_event(
        session_factory,
        _event_id(),
        "dispute.closed",
        str(order.id),
        {"dispute_id": "dp_1", "status": "won"},
    )

    order = await _reload_order(db_session, order.id)
    assert order.payment_status == PaymentStatus.DISPUTE_WON
    assert await _inventory(db_session, sku.id) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_closing_unknown_dispute_is_rejected(db_session, session_factory):
    _, order = await _pending_order(db_session)
    await _checkout_completed(session_factory, order)

    result = await apply_payment_event(
        session_factory,
        _event_id(),
        "dispute.closed",
        str(order.id),
        {"dispute_id": "dp_missing", "status": "lost"},
    )

    assert result.outcome == EventOutcome.REJECTED
    assert result.detail == "unknown dispute"
