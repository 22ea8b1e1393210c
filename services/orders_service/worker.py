"""ARQ worker for the abandoned-order sweep and webhook event retention."""

from arq import cron
from libs.common.arq_config import (
    EVENT_CLEANUP_CRON_HOUR,
    EVENT_CLEANUP_CRON_MINUTE,
    JOB_TIMEOUT_SECONDS,
    SWEEP_CRON_MINUTE,
    get_redis_settings,
)
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def startup(ctx: dict):
    configure_logging()


async def task_abandoned_order_sweep(ctx: dict):
    from libs.db.config import AsyncSessionLocal
    from services.orders_service.tasks import run_abandoned_order_sweep

    logger.info("Running: run_abandoned_order_sweep")
    result = await run_abandoned_order_sweep(AsyncSessionLocal)
    if result.has_more:
        logger.info("Abandoned order sweep saturated its batch; rest runs next hour")


async def task_cleanup_processed_events(ctx: dict):
    from libs.db.config import AsyncSessionLocal
    from services.orders_service.tasks import cleanup_processed_events

    logger.info("Running: cleanup_processed_events")
    await cleanup_processed_events(AsyncSessionLocal)


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = startup
    job_timeout = JOB_TIMEOUT_SECONDS

    functions = [
        task_abandoned_order_sweep,
        task_cleanup_processed_events,
    ]

    cron_jobs = [
        cron(
            task_abandoned_order_sweep,
            minute={SWEEP_CRON_MINUTE},
            run_at_startup=True,
        ),
        cron(
            task_cleanup_processed_events,
            hour={EVENT_CLEANUP_CRON_HOUR},
            minute={EVENT_CLEANUP_CRON_MINUTE},
        ),
    ]
