"""Parse board webhook bodies into WebhookEvent.

The platform posts either ``{"event": {...}}`` or the event object itself,
with camelCase keys (boardId, pulseId, pulseName, columnId, value,
previousValue). Platform event names are folded into three kinds.
"""

from __future__ import annotations

from typing import Any

from src.gymsync.sync.schemas import WebhookEvent, WebhookEventType


class WebhookPayloadError(ValueError):
    """Body is JSON but not a usable board event."""


_EVENT_TYPES: dict[str, WebhookEventType] = {
    "create_pulse": WebhookEventType.ITEM_CREATED,
    "create_item": WebhookEventType.ITEM_CREATED,
    "update_column_value": WebhookEventType.COLUMN_VALUE_CHANGED,
    "change_column_value": WebhookEventType.COLUMN_VALUE_CHANGED,
    "change_specific_column_value": WebhookEventType.COLUMN_VALUE_CHANGED,
    "change_status_column_value": WebhookEventType.COLUMN_VALUE_CHANGED,
    "update_name": WebhookEventType.COLUMN_VALUE_CHANGED,
    "change_name": WebhookEventType.COLUMN_VALUE_CHANGED,
    "delete_pulse": WebhookEventType.ITEM_DELETED,
    "archive_pulse": WebhookEventType.ITEM_DELETED,
    "item_deleted": WebhookEventType.ITEM_DELETED,
    "item_archived": WebhookEventType.ITEM_DELETED,
}


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def parse_webhook_event(body: Any) -> WebhookEvent:
    """Normalize a webhook body.

    Raises:
        WebhookPayloadError: Missing type, board id or item id, or unknown type.
    """
    if not isinstance(body, dict):
        raise WebhookPayloadError("webhook body must be a JSON object")
    data = body.get("event") if isinstance(body.get("event"), dict) else body

    raw_type = data.get("type")
    if not raw_type:
        raise WebhookPayloadError("webhook event has no type")
    event_type = _EVENT_TYPES.get(str(raw_type))
    if event_type is None:
        raise WebhookPayloadError(f"unsupported webhook event type: {raw_type}")

    board_id = _first(data, "boardId", "board_id")
    item_id = _first(data, "pulseId", "itemId", "item_id")
    if board_id is None or item_id is None:
        raise WebhookPayloadError("webhook event is missing boardId or pulseId")

    column_id = _first(data, "columnId", "column_id")
    new_value = data.get("value")
    if raw_type in ("update_name", "change_name"):
        column_id = "name"
        if isinstance(new_value, dict):
            new_value = new_value.get("name")

    return WebhookEvent(
        event_type=event_type,
        board_id=str(board_id),
        item_id=str(item_id),
        item_name=_first(data, "pulseName", "itemName", "item_name"),
        column_id=column_id,
        new_value=new_value,
        previous_value=data.get("previousValue"),
        raw_type=str(raw_type),
    )
