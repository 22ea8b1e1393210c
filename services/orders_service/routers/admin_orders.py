"""Admin order routes: status transitions and audit history."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db, get_session_factory
from services.orders_service.errors import OrderNotFound
from services.orders_service.models import Order
from services.orders_service.schemas import (
    BulkTransitionRequest,
    BulkTransitionResponse,
    OrderHistoryResponse,
    OrderResponse,
    TransitionRequest,
    TransitionResultResponse,
)
from services.orders_service.services import order_transitions
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

router = APIRouter(prefix="/admin/orders", tags=["admin-orders"])


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    order = (
        await db.execute(select(Order).where(Order.id == order_id))
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


@router.post("/transitions", response_model=BulkTransitionResponse)
async def bulk_transition(
    payload: BulkTransitionRequest,
    current_user: AuthUser = Depends(require_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Apply transitions to many orders; each succeeds or fails on its own."""
    results = await order_transitions.transition_orders_bulk(
        session_factory,
        [
            order_transitions.TransitionRequest(
                order_id=item.order_id,
                field=item.field,
                target=item.target,
                reason=item.reason,
                expected_version=item.expected_version,
            )
            for item in payload.items
        ],
        actor=current_user.user_id,
    )
    succeeded = sum(1 for r in results if r.success)
    return BulkTransitionResponse(
        results=[TransitionResultResponse.model_validate(r) for r in results],
        succeeded=succeeded,
        failed=len(results) - succeeded,
    )


@router.post("/{order_id}/transition", response_model=OrderResponse)
async def transition(
    order_id: uuid.UUID,
    payload: TransitionRequest,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_transitions.transition_order(
        db,
        order_id,
        payload.field,
        payload.target,
        actor=current_user.user_id,
        reason=payload.reason,
        expected_version=payload.expected_version,
    )


@router.get("/{order_id}/history", response_model=list[OrderHistoryResponse])
async def order_history(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_transitions.get_order_history(db, order_id)
