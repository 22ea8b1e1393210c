"""
Notification client for order lifecycle messages.

The order engine never formats or delivers messages itself. It hands the
Communications Service an ``(order_id, template_kind)`` pair plus a small
data payload, and that service owns templates, channels and retries.

Usage:
    from libs.common.notifications import get_notification_client

    client = get_notification_client()
    await client.notify(order.id, TemplateKind.PAYMENT_REMINDER)

Available template kinds:
- order_confirmation: Payment received, order is being processed
- payment_failed: Processor reported a failed payment
- payment_reminder: Order still unpaid after the reminder threshold
- order_cancelled: Order cancelled (admin or abandoned-order sweep)
- refund_completed: Processor confirmed a refund
- admin_dispute_alert: A chargeback was opened against an order
- admin_refund_failed: Processor rejected an approved refund
"""

import enum
import uuid
from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)


class TemplateKind(str, enum.Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REMINDER = "payment_reminder"
    ORDER_CANCELLED = "order_cancelled"
    REFUND_COMPLETED = "refund_completed"
    ADMIN_DISPUTE_ALERT = "admin_dispute_alert"
    ADMIN_REFUND_FAILED = "admin_refund_failed"


class NotificationClient:
    """
    HTTP client for the Communications Service notification endpoint.

    Authenticates with a short-lived service-role JWT. Calls are bounded by
    NOTIFICATION_TIMEOUT_SECONDS and never retried here.
    """

    def __init__(self):
        settings = get_settings()
        self.base_url = settings.COMMUNICATIONS_SERVICE_URL
        self.timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        self.enabled = settings.NOTIFICATIONS_ENABLED

    def _get_auth_headers(self) -> dict[str, str]:
        from libs.auth.dependencies import _service_role_jwt

        token = _service_role_jwt("orders")
        headers = {"Authorization": f"Bearer {token}", "X-Caller-Service": "orders"}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        return headers

    async def notify(
        self,
        order_id: uuid.UUID | str,
        template_kind: TemplateKind | str,
        data: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Ask the Communications Service to send one notification.

        Args:
            order_id: The order the message is about
            template_kind: Which message to send
            data: Optional template variables

        Returns:
            True if the service accepted the request, False otherwise
        """
        kind = TemplateKind(template_kind).value
        if not self.enabled:
            logger.info("Notifications disabled; skipping %s for order %s", kind, order_id)
            return False

        payload: dict[str, Any] = {
            "order_id": str(order_id),
            "template_kind": kind,
            "data": data or {},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/notifications/orders",
                    json=payload,
                    headers=self._get_auth_headers(),
                )
            if response.status_code < 400:
                return True
            logger.error(
                f"Notification API returned {response.status_code}: {response.text}",
                extra={"extra_fields": {"order_id": str(order_id), "kind": kind}},
            )
            return False
        except httpx.RequestError as e:
            logger.error(
                f"Failed to reach Communications Service for {kind}: {e}",
                extra={"extra_fields": {"order_id": str(order_id), "kind": kind}},
            )
            return False


_notification_client: Optional[NotificationClient] = None


def get_notification_client() -> NotificationClient:
    """Return the process-wide notification client."""
    global _notification_client
    if _notification_client is None:
        _notification_client = NotificationClient()
    return _notification_client
