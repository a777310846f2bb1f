"""Inventory side effects of product board events.

Product catalog reads are cached downstream; any create, delete, or change to
stock, price, category or name stamps the invalidation signal. Stock changes
at or below the threshold raise a low-stock alert (log + counter).
"""

from __future__ import annotations

import structlog

from src.gymsync.boards.codec import decode
from src.gymsync.boards.mapping import EntityType, ValueKind, get_mapping
from src.gymsync.cache.signal import InvalidationSignal
from src.gymsync.core.monitoring import low_stock_alerts_total
from src.gymsync.sync.schemas import WebhookEvent, WebhookEventType

logger = structlog.get_logger(__name__)

_CACHED_FIELDS = ("stock", "price", "category")


def _column_for(field_name: str) -> str:
    return next(m.remote_column_id for m in get_mapping(EntityType.inventory) if m.local_field == field_name)


class InventoryWatcher:
    """Reacts to product board events.

    Args:
        signal: Cache invalidation signal for product reads.
        low_stock_threshold: Stock at or below this value raises an alert.
    """

    def __init__(self, signal: InvalidationSignal, low_stock_threshold: int = 2) -> None:
        self._signal = signal
        self._threshold = low_stock_threshold
        self._stock_column = _column_for("stock")
        self._relevant_columns = {_column_for(f) for f in _CACHED_FIELDS} | {"name"}

    def affects_cache(self, event: WebhookEvent) -> bool:
        if event.event_type in (WebhookEventType.ITEM_CREATED, WebhookEventType.ITEM_DELETED):
            return True
        return event.column_id in self._relevant_columns

    async def handle(self, event: WebhookEvent) -> bool:
        """Apply side effects; returns True if a low-stock alert was raised."""
        if self.affects_cache(event):
            await self._signal.mark_invalidated()

        if event.column_id != self._stock_column:
            return False

        stock = decode(ValueKind.number, event.new_value)
        if stock is None or stock > self._threshold:
            return False

        low_stock_alerts_total.inc()
        logger.warning(
            "inventory.low_stock",
            item_id=event.item_id,
            product_name=event.item_name,
            stock=stock,
            threshold=self._threshold,
        )
        return True
