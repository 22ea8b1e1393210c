"""Payment processor webhook endpoint."""

import hashlib
import hmac
import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.db.session import get_session_factory
from services.orders_service.services.payment_events import apply_payment_event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"


def verify_signature(raw_body: bytes, signature: str) -> bool:
    secret = (get_settings().PAYMENT_WEBHOOK_SECRET or "").encode("utf-8")
    digest = hmac.new(secret, raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature)


@router.post("/payments")
async def payment_webhook(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Payment processor webhook (no auth; verified by X-Webhook-Signature).

    Always answers 2xx for events the engine has seen or chose to skip so the
    processor stops redelivering them. Processing errors answer non-2xx and
    the processor's redelivery retries the event.
    """
    raw = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature or not verify_signature(raw, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed payload"
        )

    event_id = payload.get("id") if isinstance(payload, dict) else None
    event_type = payload.get("type") if isinstance(payload, dict) else None
    if not event_id or not event_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Event id and type are required",
        )

    data = payload.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Event data must be an object",
        )

    order_reference = data.get("order_reference")
    if order_reference is not None and not isinstance(order_reference, str):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="order_reference must be a string",
        )

    result = await apply_payment_event(
        session_factory,
        event_id=str(event_id),
        event_type=str(event_type),
        order_reference=order_reference,
        payload=data,
    )
    return {"received": True, "status": result.outcome.value}
