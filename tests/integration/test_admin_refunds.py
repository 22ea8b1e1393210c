"""Integration tests for admin refund and discount endpoints."""

import uuid
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
from services.orders_service.models import OrderStatus, PaymentStatus
from tests.factories import DiscountFactory, OrderFactory, ProductSkuFactory


async def _paid_order(db_session):
    sku = ProductSkuFactory.create(inventory=10)
    order = OrderFactory.create(
        lines=[(sku, 2)],
        status=OrderStatus.PROCESSING,
        payment_status=PaymentStatus.PAID,
        payment_intent_id=f"pi_{uuid.uuid4().hex[:12]}",
        paid_at=utc_now(),
        stock_decremented_at=utc_now(),
    )
    db_session.add_all([sku, order])
    await db_session.commit()
    return order


async def _request_refund(client, order, quantity=1):
    response = await client.post(
        "/admin/refunds",
        json={
            "order_id": str(order.id),
            "reason": "defective",
            "items": [
                {
                    "order_item_id": str(order.items[0].id),
                    "quantity": quantity,
                    "restock": True,
                }
            ],
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_and_list_refund(client, db_session):
    order = await _paid_order(db_session)

    refund = await _request_refund(client, order)

    assert refund["status"] == "pending"
    assert Decimal(refund["amount"]) == Decimal("25.00")
    assert refund["requested_by"] == "admin-1"
    assert refund["items"][0]["restock"] is True

    listed = await client.get(
        "/admin/refunds", params={"refund_status": "pending", "order_id": str(order.id)}
    )
    assert listed.status_code == 200
    assert [r["id"] for r in listed.json()] == [refund["id"]]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_refund_over_quantity_is_a_conflict(client, db_session):
    order = await _paid_order(db_session)

    response = await client.post(
        "/admin/refunds",
        json={
            "order_id": str(order.id),
            "reason": "defective",
            "items": [{"order_item_id": str(order.items[0].id), "quantity": 3}],
        },
    )

    assert response.status_code == 409


@pytest.mark.asyncio
@pytest.mark.integration
async def test_approve_submits_and_reports(client, db_session, fake_processor):
    order = await _paid_order(db_session)
    good = await _request_refund(client, order)
    bad = await _request_refund(client, order)
    fake_processor.fail_refund(bad["id"], "card expired")

    response = await client.post(
        "/admin/refunds/approve", json={"refund_ids": [good["id"], bad["id"]]}
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["succeeded"] == 1
    assert data["failed"] == 1
    results = {r["refund_id"]: r for r in data["results"]}
    assert results[good["id"]]["status"] == "approved"
    assert results[bad["id"]]["status"] == "failed"
    assert results[bad["id"]]["error"] == "card expired"
    assert len(fake_processor.calls) == 2


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reject_refund(client, db_session, fake_processor):
    order = await _paid_order(db_session)
    refund = await _request_refund(client, order)

    rejected = await client.post(
        "/admin/refunds/reject",
        json={"refund_ids": [refund["id"]], "note": "Item was used"},
    )
    again = await client.post(
        "/admin/refunds/approve", json={"refund_ids": [refund["id"]]}
    )

    assert rejected.json()["succeeded"] == 1
    assert again.json()["failed"] == 1
    assert fake_processor.calls == []


# ---------------------------------------------------------------------------
# Discounts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_discount_normalizes_code(client):
    response = await client.post(
        "/admin/discounts",
        json={"code": " summer20 ", "discount_type": "percentage", "value": "20"},
    )

    assert response.status_code == 201, response.text
    assert response.json()["code"] == "SUMMER20"

    duplicate = await client.post(
        "/admin/discounts",
        json={"code": "SUMMER20", "discount_type": "fixed", "value": "5"},
    )
    assert duplicate.status_code == 400


@pytest.mark.asyncio
@pytest.mark.integration
async def test_percentage_over_100_is_invalid(client):
    response = await client.post(
        "/admin/discounts",
        json={"code": "TOOMUCH", "discount_type": "percentage", "value": "150"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_list_discounts(client, db_session):
    db_session.add_all([DiscountFactory.create(), DiscountFactory.create()])
    await db_session.commit()

    response = await client.get("/admin/discounts")

    assert response.status_code == 200
    assert len(response.json()) == 2
