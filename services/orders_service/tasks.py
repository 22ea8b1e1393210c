"""Background jobs for the orders service: abandoned-order sweep and
processed-event retention."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from libs.common.config import get_settings
from libs.common.datetime_utils import to_utc, utc_now
from libs.common.logging import get_logger
from libs.common.notifications import TemplateKind
from services.orders_service.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    ProcessedEventStatus,
    ProcessedPaymentEvent,
    StatusField,
)
from services.orders_service.services.order_transitions import (
    SYSTEM_ACTOR,
    apply_transition,
    commit_order_changes,
    lock_order,
)
from services.orders_service.services.post_commit import PostCommitTasks
from services.orders_service.services.stock_ledger import restore_for_order
from sqlalchemy import Select, and_, delete, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

MAX_CLEANUP_BATCHES = 50


@dataclass
class SweepResult:
    reminders_sent: int = 0
    cancelled: int = 0
    stock_restored: int = 0
    errors: int = 0
    has_more: bool = False
    query_failed: bool = False


def _is_unpaid(order: Order) -> bool:
    return (
        order.status == OrderStatus.PENDING
        and order.payment_status == PaymentStatus.PENDING
        and order.deleted_at is None
    )


async def _fetch_ids(
    session_factory: async_sessionmaker[AsyncSession],
    query: Select,
    timeout: float,
) -> list[uuid.UUID]:
    """Run a listing query under a statement timeout and return the ids.

    The session is closed before the caller starts per-order work.
    """
    async with session_factory() as db:
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(
                text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}")
            )
        result = await asyncio.wait_for(db.execute(query), timeout=timeout)
        ids = list(result.scalars().all())
        await db.rollback()
    return ids


async def _cancel_abandoned(
    session_factory: async_sessionmaker[AsyncSession],
    order_id: uuid.UUID,
    cancel_cutoff: datetime,
    reason: str,
) -> tuple[bool, bool]:
    """Cancel one order in its own transaction.

    Returns ``(cancelled, stock_restored)``. State is re-checked under the
    row lock; an order paid since the listing query is left alone.
    """
    tasks = PostCommitTasks()
    async with session_factory() as db:
        try:
            order = await lock_order(db, order_id)
            if not _is_unpaid(order) or to_utc(order.created_at) > cancel_cutoff:
                await db.rollback()
                return False, False

            apply_transition(
                db,
                order,
                StatusField.STATUS,
                OrderStatus.CANCELLED,
                actor=SYSTEM_ACTOR,
                reason=reason,
                tasks=tasks,
            )
            restored = await restore_for_order(db, order, reason=reason, tasks=tasks)
            tasks.notify(order.id, TemplateKind.ORDER_CANCELLED, {"reason": reason})
            await commit_order_changes(db)
        except Exception:
            await db.rollback()
            raise

    await tasks.dispatch()
    return True, restored > 0


async def _remind_abandoned(
    session_factory: async_sessionmaker[AsyncSession],
    order_id: uuid.UUID,
    now: datetime,
) -> bool:
    tasks = PostCommitTasks()
    async with session_factory() as db:
        try:
            order = await lock_order(db, order_id)
            if not _is_unpaid(order) or order.reminder_sent_at is not None:
                await db.rollback()
                return False

            order.reminder_sent_at = now
            tasks.notify(
                order.id,
                TemplateKind.PAYMENT_REMINDER,
                {"order_number": order.order_number, "total": str(order.total)},
            )
            await commit_order_changes(db)
        except Exception:
            await db.rollback()
            raise

    await tasks.dispatch()
    return True


async def run_abandoned_order_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
) -> SweepResult:
    """Cancel unpaid orders past the cancel threshold, then remind the rest.

    Processes at most SWEEP_BATCH_SIZE orders per phase. A full batch sets
    ``has_more``; the next scheduled run picks up the remainder.
    """
    settings = get_settings()
    now = to_utc(now) or utc_now()
    cancel_hours = settings.ABANDONED_CANCEL_HOURS
    cancel_cutoff = now - timedelta(hours=cancel_hours)
    reminder_cutoff = now - timedelta(hours=settings.ABANDONED_REMINDER_HOURS)
    batch_size = settings.SWEEP_BATCH_SIZE
    timeout = settings.SWEEP_QUERY_TIMEOUT_SECONDS
    reason = f"no payment after timeout ({cancel_hours}h)"

    result = SweepResult()
    unpaid = and_(
        Order.status == OrderStatus.PENDING,
        Order.payment_status == PaymentStatus.PENDING,
        Order.deleted_at.is_(None),
    )

    # Cancellation
    try:
        cancel_ids = await _fetch_ids(
            session_factory,
            select(Order.id)
            .where(unpaid, Order.created_at <= cancel_cutoff)
            .order_by(Order.created_at.asc())
            .limit(batch_size),
            timeout,
        )
    except (asyncio.TimeoutError, SQLAlchemyError) as e:
        logger.error(f"Abandoned order cancel query failed: {e!r}")
        result.query_failed = True
        cancel_ids = []

    if len(cancel_ids) >= batch_size:
        result.has_more = True

    for order_id in cancel_ids:
        try:
            cancelled, restored = await _cancel_abandoned(
                session_factory, order_id, cancel_cutoff, reason
            )
        except Exception as e:
            result.errors += 1
            logger.error(
                f"Failed to cancel abandoned order {order_id}: {e}",
                exc_info=True,
                extra={"extra_fields": {"order_id": str(order_id)}},
            )
            continue
        if cancelled:
            result.cancelled += 1
        if restored:
            result.stock_restored += 1

    # Reminders
    try:
        reminder_ids = await _fetch_ids(
            session_factory,
            select(Order.id)
            .where(
                unpaid,
                Order.created_at > cancel_cutoff,
                Order.created_at <= reminder_cutoff,
                Order.reminder_sent_at.is_(None),
            )
            .order_by(Order.created_at.asc())
            .limit(batch_size),
            timeout,
        )
    except (asyncio.TimeoutError, SQLAlchemyError) as e:
        logger.error(f"Abandoned order reminder query failed: {e!r}")
        result.query_failed = True
        reminder_ids = []

    if len(reminder_ids) >= batch_size:
        result.has_more = True

    for order_id in reminder_ids:
        try:
            if await _remind_abandoned(session_factory, order_id, now):
                result.reminders_sent += 1
        except Exception as e:
            result.errors += 1
            logger.error(
                f"Failed to send payment reminder for order {order_id}: {e}",
                exc_info=True,
                extra={"extra_fields": {"order_id": str(order_id)}},
            )

    logger.info(
        "Abandoned order sweep: %d cancelled, %d reminded, %d error(s)%s",
        result.cancelled,
        result.reminders_sent,
        result.errors,
        " (more remaining)" if result.has_more else "",
        extra={"extra_fields": asdict(result)},
    )
    return result


async def cleanup_processed_events(
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
) -> int:
    """Delete processed-event records past their retention window.

    Completed and skipped events are kept EVENT_RETENTION_DAYS, failed ones
    FAILED_EVENT_RETENTION_DAYS. Returns the number of rows deleted.
    """
    settings = get_settings()
    now = to_utc(now) or utc_now()
    done_cutoff = now - timedelta(days=settings.EVENT_RETENTION_DAYS)
    failed_cutoff = now - timedelta(days=settings.FAILED_EVENT_RETENTION_DAYS)
    batch_size = settings.EVENT_CLEANUP_BATCH_SIZE

    expired = or_(
        and_(
            ProcessedPaymentEvent.status.in_(
                [ProcessedEventStatus.COMPLETED, ProcessedEventStatus.SKIPPED]
            ),
            ProcessedPaymentEvent.received_at < done_cutoff,
        ),
        and_(
            ProcessedPaymentEvent.status == ProcessedEventStatus.FAILED,
            ProcessedPaymentEvent.received_at < failed_cutoff,
        ),
    )

    deleted = 0
    for _ in range(MAX_CLEANUP_BATCHES):
        async with session_factory() as db:
            ids = list(
                (
                    await db.execute(
                        select(ProcessedPaymentEvent.id).where(expired).limit(batch_size)
                    )
                )
                .scalars()
                .all()
            )
            if not ids:
                break
            await db.execute(
                delete(ProcessedPaymentEvent)
                .where(ProcessedPaymentEvent.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        deleted += len(ids)
        if len(ids) < batch_size:
            break

    if deleted:
        logger.info("Deleted %d expired processed payment events", deleted)
    return deleted
