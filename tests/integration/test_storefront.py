"""Integration tests for checkout and discount preview endpoints."""

from decimal import Decimal

import pytest
from tests.factories import DiscountFactory, ProductSkuFactory


def _checkout_body(sku, quantity=1, **overrides):
    body = {
        "items": [{"sku_id": str(sku.id), "quantity": quantity}],
        "customer": {"email": "ada@example.com", "name": "Ada Customer"},
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_creates_pending_order(client, db_session):
    sku = ProductSkuFactory.create(price=Decimal("25.00"), inventory=5)
    discount = DiscountFactory.create(code="TENOFF", value=Decimal("10"))
    db_session.add_all([sku, discount])
    await db_session.commit()

    response = await client.post(
        "/store/checkout",
        json=_checkout_body(sku, quantity=2, discount_code="tenoff"),
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["status"] == "pending"
    assert data["payment_status"] == "pending"
    assert data["fulfillment_status"] == "unfulfilled"
    assert Decimal(data["subtotal"]) == Decimal("50.00")
    assert Decimal(data["discount_amount"]) == Decimal("5.00")
    assert Decimal(data["total"]) == Decimal("45.00")
    assert data["customer_id"] is None
    assert len(data["items"]) == 1
    assert data["items"][0]["sku_code"] == sku.sku_code


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_rejects_quantity_above_stock(client, db_session):
    sku = ProductSkuFactory.create(inventory=1)
    db_session.add(sku)
    await db_session.commit()

    response = await client.post("/store/checkout", json=_checkout_body(sku, 3))

    assert response.status_code == 400
    assert "left in stock" in response.json()["detail"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_validates_customer_email(client, db_session):
    sku = ProductSkuFactory.create()
    db_session.add(sku)
    await db_session.commit()

    body = _checkout_body(sku, customer={"email": "not-an-email", "name": "Ada"})
    response = await client.post("/store/checkout", json=body)

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_discount_preview_does_not_consume(client, db_session):
    discount = DiscountFactory.create(code="ONEUSE", max_uses=1)
    db_session.add(discount)
    await db_session.commit()

    for _ in range(2):
        response = await client.post(
            "/store/discounts/validate", json={"code": "oneuse", "subtotal": "80.00"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert Decimal(data["discount_amount"]) == Decimal("8.00")
        assert Decimal(data["final_subtotal"]) == Decimal("72.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_discount_preview_unknown_code(client):
    response = await client.post(
        "/store/discounts/validate", json={"code": "NOPE", "subtotal": "10.00"}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is False
    assert data["message"] == "Invalid discount code"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_health_echoes_request_id(client):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "orders"}
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_request_id_is_generated_when_absent(client):
    response = await client.get("/health")
    assert response.headers.get("X-Request-ID")
