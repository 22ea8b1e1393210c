"""Side effects that run only after an order transaction commits.

Writers collect notifications and cache keys on a ``PostCommitTasks`` while
the transaction is open and call ``dispatch()`` once it has committed. A
rolled back transaction simply drops its tasks.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from libs.common.cache import (
    INVENTORY_KEY,
    invalidate_cache_keys,
    order_cache_keys,
    sku_key,
)
from libs.common.logging import get_logger
from libs.common.notifications import TemplateKind, get_notification_client

logger = get_logger(__name__)


@dataclass
class PendingNotification:
    order_id: uuid.UUID
    template_kind: TemplateKind
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PostCommitTasks:
    notifications: list[PendingNotification] = field(default_factory=list)
    cache_keys: set[str] = field(default_factory=set)

    def notify(
        self,
        order_id: uuid.UUID,
        template_kind: TemplateKind,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        self.notifications.append(
            PendingNotification(order_id, template_kind, data or {})
        )

    def touch_order(self, order_id: uuid.UUID, customer_id: Optional[str] = None):
        self.cache_keys.update(order_cache_keys(order_id, customer_id))

    def touch_sku(self, sku_id: uuid.UUID) -> None:
        self.cache_keys.update((sku_key(sku_id), INVENTORY_KEY))

    async def dispatch(self) -> None:
        """Send queued notifications and invalidate touched cache keys.

        Never raises: a failed notification or Redis outage is logged by the
        collaborator and the caller's result stands.
        """
        client = get_notification_client()
        for pending in self.notifications:
            try:
                await client.notify(
                    pending.order_id, pending.template_kind, pending.data
                )
            except Exception as e:
                logger.error(
                    f"Notification {pending.template_kind.value} failed: {e}",
                    extra={"extra_fields": {"order_id": str(pending.order_id)}},
                )

        if self.cache_keys:
            await invalidate_cache_keys(self.cache_keys)

        self.notifications.clear()
        self.cache_keys.clear()
