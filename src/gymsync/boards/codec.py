"""Value codec between local field values and remote column wire values.

encode() turns a local value into the column-value object the board API
expects; decode() does the reverse for values read from items or webhook
events. Both are pure and total: encode returns None for anything it cannot
represent, and callers omit that column from the payload instead of sending
null (null would erase the remote value on a partial update).

Decoding reads the first label of status/dropdown columns and the first
linked item of link columns. Multi-valued remote cells lose their tail.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import structlog

from src.gymsync.boards.mapping import ColumnMapping, EntityType, ValueKind, get_mapping
from src.gymsync.core.monitoring import codec_number_coercions_total, codec_omitted_fields_total

logger = structlog.get_logger(__name__)

DEFAULT_COUNTRY_CODE = "MX"

_DECODE_ERRORS = (TypeError, ValueError, KeyError, IndexError, AttributeError)


# ── Encoding ────────────────────────────────────────────────────────────────


def _to_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _to_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        # "nan", "inf" and overflowing literals have no JSON form.
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() else number
    return None


def _to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _link_id(value: Any) -> int | str | None:
    text = str(value).strip()
    if not text:
        return None
    return int(text) if text.isdigit() else text


def encode(kind: ValueKind, value: Any, country_code: str = DEFAULT_COUNTRY_CODE) -> Any:
    """Encode a local value for a column of the given kind.

    Returns None when the value is absent or cannot be encoded; the caller
    must omit the column in that case.
    """
    if value is None:
        return None

    if kind in (ValueKind.text, ValueKind.email):
        if isinstance(value, (dict, list)):
            return None
        return str(value)

    if kind == ValueKind.phone:
        phone = str(value).strip()
        if not phone:
            return None
        return {"phone": phone, "countryShortName": country_code}

    if kind == ValueKind.date:
        parsed = _to_date(value)
        return {"date": parsed.isoformat()} if parsed else None

    if kind == ValueKind.status:
        label = str(value).strip()
        return {"label": label} if label else None

    if kind == ValueKind.dropdown:
        values = value if isinstance(value, (list, tuple, set)) else [value]
        labels = [str(v).strip() for v in values if v is not None and str(v).strip()]
        return {"labels": labels} if labels else None

    if kind == ValueKind.number:
        return _to_number(value)

    if kind == ValueKind.checkbox:
        flag = _to_bool(value)
        if flag is None:
            return None
        return {"checked": "true" if flag else "false"}

    if kind == ValueKind.link:
        item_id = _link_id(value)
        return {"item_ids": [item_id]} if item_id is not None else None

    return None


@dataclass
class EncodedPayload:
    """Outbound column values plus the local fields that had to be dropped."""

    column_values: dict[str, Any] = field(default_factory=dict)
    omitted_fields: list[str] = field(default_factory=list)


def encode_record(
    entity_type: EntityType,
    data: dict[str, Any],
    country_code: str = DEFAULT_COUNTRY_CODE,
    mappings: tuple[ColumnMapping, ...] | None = None,
) -> EncodedPayload:
    """Encode every mapped field of a local record.

    Absent fields are skipped silently. Present fields that cannot be encoded
    are omitted, logged and counted.
    """
    payload = EncodedPayload()
    for mapping in mappings if mappings is not None else get_mapping(entity_type):
        value = data.get(mapping.local_field)
        if value is None:
            continue
        wire = encode(mapping.value_kind, value, country_code)
        if wire is None:
            payload.omitted_fields.append(mapping.local_field)
            codec_omitted_fields_total.labels(
                entity_type=entity_type.value, field=mapping.local_field
            ).inc()
            continue
        payload.column_values[mapping.remote_column_id] = wire

    if payload.omitted_fields:
        logger.warning(
            "codec.fields_omitted",
            entity_type=entity_type.value,
            fields=payload.omitted_fields,
        )
    return payload


# ── Decoding ────────────────────────────────────────────────────────────────


def _parse_wire(wire: Any) -> Any:
    """Item queries return column values as JSON strings; webhooks send objects."""
    if isinstance(wire, str) and wire.lstrip()[:1] in ("{", "[", '"'):
        try:
            return json.loads(wire)
        except ValueError:
            return wire
    return wire


def _first_text(text: str | None) -> str | None:
    if text is None:
        return None
    first = text.split(",")[0].strip()
    return first or None


def _decode_text(wire: Any, text: str | None) -> str | None:
    if isinstance(wire, dict):
        for key in ("text", "value", "email"):
            if wire.get(key) not in (None, ""):
                return str(wire[key])
        return text or None
    if wire not in (None, ""):
        return str(wire)
    return text or None


def _decode_phone(wire: Any, text: str | None) -> str | None:
    if isinstance(wire, dict):
        phone = wire.get("phone")
        return str(phone) if phone else (text or None)
    if wire not in (None, ""):
        return str(wire)
    return text or None


def _decode_date(wire: Any, text: str | None) -> date | None:
    raw: Any = wire
    if isinstance(raw, dict):
        raw = raw.get("date")
        if isinstance(raw, dict):
            raw = raw.get("date")
    parsed = _to_date(raw)
    if parsed is None:
        parsed = _to_date(text)
    return parsed


def _decode_status(wire: Any, text: str | None) -> str | None:
    label: Any = None
    if isinstance(wire, dict):
        label = wire.get("label")
        if isinstance(label, dict):
            label = label.get("text")
        if label is None and isinstance(wire.get("text"), str):
            label = wire["text"]
    elif isinstance(wire, str):
        label = wire
    if not label:
        label = text
    return str(label).strip().lower() if label else None


def _decode_dropdown(wire: Any, text: str | None) -> str | None:
    if isinstance(wire, dict):
        labels = wire.get("labels")
        if labels:
            first = labels[0]
            return str(first.get("name") if isinstance(first, dict) else first)
        chosen = wire.get("chosenValues")
        if chosen:
            return str(chosen[0].get("name"))
        label = wire.get("label")
        if isinstance(label, dict):
            label = label.get("text")
        if label:
            return str(label)
    elif isinstance(wire, list) and wire:
        return str(wire[0])
    elif isinstance(wire, str) and wire:
        return _first_text(wire)
    return _first_text(text)


def _decode_number(wire: Any, text: str | None) -> int | float | None:
    raw: Any = wire
    if isinstance(raw, dict):
        raw = raw.get("value", raw.get("numbers"))
    if raw in (None, ""):
        raw = text
    if raw in (None, ""):
        return None
    number = _to_number(raw)
    if number is None:
        logger.warning("codec.number_coerced_to_zero", raw_value=str(raw)[:100])
        codec_number_coercions_total.inc()
        return 0
    return number


def _decode_checkbox(wire: Any, text: str | None) -> bool | None:
    raw: Any = wire
    if isinstance(raw, dict):
        raw = raw.get("checked")
    if isinstance(raw, bool):
        return raw
    if raw is None:
        raw = text
    if raw is None:
        return None
    return str(raw).strip().lower() in ("true", "v", "1")


def _decode_link(wire: Any, text: str | None) -> str | None:
    if isinstance(wire, dict):
        item_ids = wire.get("item_ids")
        if item_ids:
            return str(item_ids[0])
        linked = wire.get("linkedPulseIds")
        if linked:
            return str(linked[0].get("linkedPulseId"))
        return None
    if isinstance(wire, (int, str)) and str(wire).strip():
        return str(wire).strip()
    return None


_DECODERS = {
    ValueKind.text: _decode_text,
    ValueKind.email: _decode_text,
    ValueKind.phone: _decode_phone,
    ValueKind.date: _decode_date,
    ValueKind.status: _decode_status,
    ValueKind.dropdown: _decode_dropdown,
    ValueKind.number: _decode_number,
    ValueKind.checkbox: _decode_checkbox,
    ValueKind.link: _decode_link,
}


def decode(kind: ValueKind, wire: Any, text: str | None = None) -> Any:
    """Decode a remote column value; None when nothing usable is present.

    Args:
        kind: Column value kind.
        wire: Raw value, either a JSON string (item reads) or an object (webhooks).
        text: The column's display text, used when the value carries nothing.
    """
    try:
        return _DECODERS[kind](_parse_wire(wire), text)
    except _DECODE_ERRORS:
        logger.warning("codec.decode_failed", kind=kind.value, raw_value=str(wire)[:100])
        return None


def decode_columns(
    entity_type: EntityType,
    column_values: list[dict[str, Any]],
) -> dict[str, Any]:
    """Decode an item's column_values list into local fields.

    Unmapped columns and columns with nothing decodable are left out, so the
    result is suitable for a partial update.
    """
    lookup = {m.remote_column_id: m for m in get_mapping(entity_type)}
    fields: dict[str, Any] = {}
    for column in column_values:
        mapping = lookup.get(column.get("id", ""))
        if mapping is None:
            continue
        value = decode(mapping.value_kind, column.get("value"), column.get("text"))
        if value is not None:
            fields[mapping.local_field] = value
    return fields
