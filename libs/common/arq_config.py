"""ARQ (Async Redis Queue) configuration for the order engine's scheduled jobs.

The sweep and event-cleanup crons share one Redis; its location comes from
``REDIS_URL`` (``rediss://`` switches TLS on).
"""

from urllib.parse import urlparse

from arq.connections import RedisSettings
from libs.common.config import get_settings

# Hourly, off the top of the hour
SWEEP_CRON_MINUTE = 7
# Daily, in the low-traffic window
EVENT_CLEANUP_CRON_HOUR = 3
EVENT_CLEANUP_CRON_MINUTE = 30

# A sweep works through at most two batches of per-order transactions
JOB_TIMEOUT_SECONDS = 600


def get_redis_settings() -> RedisSettings:
    """Build ARQ RedisSettings from the configured REDIS_URL."""
    settings = get_settings()
    parsed = urlparse(settings.REDIS_URL)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_timeout=5,
    )
