"""
Payment processor API client for refund submission.

Calls are bounded by PAYMENT_PROCESSOR_TIMEOUT_SECONDS and never retried
here: the processor's own webhook redelivery carries retries, and every
request sends an idempotency key so a manual resubmission is safe.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.orders_service.errors import PaymentProcessorError

logger = get_logger(__name__)


@dataclass
class ProcessorRefund:
    """Refund as acknowledged by the processor."""

    external_id: str
    status: str  # pending, succeeded, failed
    amount: int  # minor units


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


class PaymentProcessorClient:
    """Async client for the processor's refund API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.PAYMENT_PROCESSOR_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PAYMENT_PROCESSOR_API_KEY
        self.timeout = timeout or settings.PAYMENT_PROCESSOR_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self, idempotency_key: Optional[str] = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._headers(idempotency_key),
                    json=json_data,
                )
        except httpx.TimeoutException as e:
            raise PaymentProcessorError(
                f"Payment processor timed out after {self.timeout}s"
            ) from e
        except httpx.RequestError as e:
            raise PaymentProcessorError(f"Payment processor unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            error = data.get("error")
            message = (
                error.get("message") if isinstance(error, dict) else data.get("message")
            )
            logger.error(
                f"Payment processor API error: {response.status_code} - {data}"
            )
            raise PaymentProcessorError(
                message or f"Payment processor returned {response.status_code}"
            )
        return data

    async def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount: Decimal,
        refund_id: str,
        reason: Optional[str] = None,
    ) -> ProcessorRefund:
        """
        Submit a refund for a captured payment.

        Args:
            payment_intent_id: Processor id of the original payment
            amount: Amount to refund in major units
            refund_id: Local refund id, echoed back in webhook metadata
            reason: Optional refund reason

        Returns:
            ProcessorRefund with the processor's refund id
        """
        data = await self._request(
            "POST",
            "/v1/refunds",
            json_data={
                "payment_intent": payment_intent_id,
                "amount": to_minor_units(amount),
                "reason": reason,
                "metadata": {"local_refund_id": refund_id},
            },
            idempotency_key=f"refund_{refund_id}",
        )
        external_id = data.get("id")
        if not external_id:
            raise PaymentProcessorError("Payment processor response missing refund id")
        return ProcessorRefund(
            external_id=external_id,
            status=data.get("status", "pending"),
            amount=int(data.get("amount") or to_minor_units(amount)),
        )


_processor_client: Optional[PaymentProcessorClient] = None


def get_payment_processor_client() -> PaymentProcessorClient:
    """FastAPI dependency returning the process-wide processor client."""
    global _processor_client
    if _processor_client is None:
        _processor_client = PaymentProcessorClient()
    return _processor_client
