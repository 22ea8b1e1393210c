"""Admin discount code management."""

from fastapi import APIRouter, Depends, HTTPException, status
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.orders_service.models import Discount
from services.orders_service.schemas import DiscountCreate, DiscountResponse
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/admin/discounts", tags=["admin-discounts"])
logger = get_logger(__name__)


@router.post("", response_model=DiscountResponse, status_code=status.HTTP_201_CREATED)
async def create_discount(
    payload: DiscountCreate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a new discount code (Admin only)."""
    existing = await db.execute(select(Discount).where(Discount.code == payload.code))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Discount code '{payload.code}' already exists",
        )

    discount = Discount(**payload.model_dump())
    db.add(discount)
    await db.commit()
    await db.refresh(discount)
    logger.info("Discount %s created by %s", discount.code, current_user.user_id)
    return discount


@router.get("", response_model=list[DiscountResponse])
async def list_discounts(
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """List all discount codes (Admin only)."""
    result = await db.execute(select(Discount).order_by(desc(Discount.created_at)))
    return result.scalars().all()
