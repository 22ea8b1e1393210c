"""Admin refund routes: request, list and bulk review."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db, get_session_factory
from services.orders_service.models import RefundStatus
from services.orders_service.payment_client import (
    PaymentProcessorClient,
    get_payment_processor_client,
)
from services.orders_service.schemas import (
    RefundActionResultResponse,
    RefundCreate,
    RefundResponse,
    RefundReviewRequest,
    RefundReviewResponse,
)
from services.orders_service.services import refunds as refund_service
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

router = APIRouter(prefix="/admin/refunds", tags=["admin-refunds"])


def _review_response(results) -> RefundReviewResponse:
    succeeded = sum(1 for r in results if r.success)
    return RefundReviewResponse(
        results=[RefundActionResultResponse.model_validate(r) for r in results],
        succeeded=succeeded,
        failed=len(results) - succeeded,
    )


@router.post("", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
async def create_refund_request(
    payload: RefundCreate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Open a pending refund request. Nothing is sent to the processor yet."""
    return await refund_service.request_refund(
        db,
        payload.order_id,
        [
            refund_service.RefundLine(
                order_item_id=item.order_item_id,
                quantity=item.quantity,
                restock=item.restock,
            )
            for item in payload.items
        ],
        payload.reason,
        actor=current_user.user_id,
        note=payload.note,
        amount=payload.amount,
    )


@router.get("", response_model=list[RefundResponse])
async def list_refund_requests(
    refund_status: Optional[RefundStatus] = None,
    order_id: Optional[uuid.UUID] = None,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await refund_service.list_refunds(db, status=refund_status, order_id=order_id)


@router.post("/approve", response_model=RefundReviewResponse)
async def approve_refunds(
    payload: RefundReviewRequest,
    current_user: AuthUser = Depends(require_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    client: PaymentProcessorClient = Depends(get_payment_processor_client),
):
    """Approve refunds and submit them to the processor, one at a time."""
    results = await refund_service.approve_refunds_bulk(
        session_factory,
        payload.refund_ids,
        actor=current_user.user_id,
        client=client,
    )
    return _review_response(results)


@router.post("/reject", response_model=RefundReviewResponse)
async def reject_refunds(
    payload: RefundReviewRequest,
    current_user: AuthUser = Depends(require_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    results = await refund_service.reject_refunds_bulk(
        session_factory,
        payload.refund_ids,
        actor=current_user.user_id,
        note=payload.note,
    )
    return _review_response(results)
