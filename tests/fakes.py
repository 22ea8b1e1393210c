"""In-process stand-ins for the engine's outbound collaborators."""

import hashlib
import hmac
import json
import uuid
from decimal import Decimal
from typing import Any, Optional

from libs.common.notifications import TemplateKind
from services.orders_service.errors import PaymentProcessorError
from services.orders_service.payment_client import ProcessorRefund, to_minor_units


class FakeNotificationClient:
    """Records notify() calls."""

    def __init__(self):
        self.sent: list[tuple[str, TemplateKind, dict]] = []

    async def notify(self, order_id, template_kind, data=None) -> bool:
        self.sent.append((str(order_id), TemplateKind(template_kind), data or {}))
        return True

    def kinds_for(self, order_id) -> list[TemplateKind]:
        return [kind for oid, kind, _ in self.sent if oid == str(order_id)]


class FakeProcessorClient:
    """Accepts refunds unless told to fail a specific local refund id."""

    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.fail_for: dict[str, str] = {}

    def fail_refund(self, refund_id, message: str = "charge already refunded"):
        self.fail_for[str(refund_id)] = message

    async def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount: Decimal,
        refund_id: str,
        reason: Optional[str] = None,
    ) -> ProcessorRefund:
        self.calls.append(
            {
                "payment_intent_id": payment_intent_id,
                "amount": amount,
                "refund_id": refund_id,
                "reason": reason,
            }
        )
        if refund_id in self.fail_for:
            raise PaymentProcessorError(self.fail_for[refund_id])
        return ProcessorRefund(
            external_id=f"re_{uuid.uuid4().hex[:12]}",
            status="pending",
            amount=to_minor_units(amount),
        )


def signed_webhook(payload: dict, secret: str = "whsec_test") -> tuple[bytes, dict]:
    """Serialize a webhook body and return it with its signature header."""
    body = json.dumps(payload).encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return body, {
        "Content-Type": "application/json",
        "X-Webhook-Signature": signature,
    }
