"""Best-effort cache invalidation.

Order transitions change what the storefront and admin views show. After a
transaction commits, the writer emits the affected cache keys here; the keys
are deleted and published on ``CACHE_INVALIDATION_CHANNEL`` so other
processes can drop their local copies.

Invalidation is never part of the database transaction. A Redis outage logs
a warning and the caller carries on.

Usage:
    from libs.common.cache import invalidate_cache_keys, order_cache_keys

    await invalidate_cache_keys(order_cache_keys(order.id, order.customer_id))
"""

import json
import uuid
from typing import Iterable, Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.redis import get_redis

logger = get_logger(__name__)

# Cache keys
ORDERS_LIST_KEY = "orders:list"
ADMIN_BADGES_KEY = "admin:badges"
INVENTORY_KEY = "inventory:list"


def order_detail_key(order_id: uuid.UUID | str) -> str:
    return f"orders:detail:{order_id}"


def customer_orders_key(customer_id: str) -> str:
    return f"orders:customer:{customer_id}"


def sku_key(sku_id: uuid.UUID | str) -> str:
    return f"sku:{sku_id}"


def order_cache_keys(
    order_id: uuid.UUID | str, customer_id: Optional[str] = None
) -> list[str]:
    """Keys touched by any change to one order."""
    keys = [ORDERS_LIST_KEY, ADMIN_BADGES_KEY, order_detail_key(order_id)]
    if customer_id:
        keys.append(customer_orders_key(customer_id))
    return keys


async def invalidate_cache_keys(keys: Iterable[str]) -> bool:
    """
    Delete the given keys and publish them on the invalidation channel.

    Returns:
        True if Redis accepted the invalidation, False if disabled or unavailable
    """
    unique_keys = sorted(set(keys))
    if not unique_keys:
        return True

    settings = get_settings()
    if not settings.CACHE_INVALIDATION_ENABLED:
        return False

    try:
        redis = await get_redis()
        await redis.delete(*unique_keys)
        await redis.publish(
            settings.CACHE_INVALIDATION_CHANNEL, json.dumps({"keys": unique_keys})
        )
        logger.debug("Invalidated %d cache keys", len(unique_keys))
        return True
    except Exception as e:
        logger.warning(f"Cache invalidation failed for {unique_keys}: {e}")
        return False
