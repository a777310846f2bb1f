"""Column mapping tables between local records and remote board columns.

Defines:
- ValueKind: wire encodings understood by the value codec.
- EntityType: the synchronizable business entities, one board each.
- ColumnMapping: a single (local_field, remote_column_id, value_kind) triple.
- COLUMN_MAPPINGS: the static per-entity tables.
- get_mapping() / column_lookup(): accessors used by the codec and sync manager.

Tables are validated at import time: local fields and remote column ids are
each unique within an entity type.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ValueKind(str, Enum):
    text = "text"
    email = "email"
    phone = "phone"
    date = "date"
    status = "status"
    number = "number"
    dropdown = "dropdown"
    checkbox = "checkbox"
    link = "link"


class EntityType(str, Enum):
    members = "members"
    contracts = "contracts"
    payments = "payments"
    employees = "employees"
    inventory = "inventory"
    schedule = "schedule"


class ColumnMapping(BaseModel):
    """One local field bound to one remote column."""

    model_config = ConfigDict(frozen=True)

    local_field: str
    remote_column_id: str
    value_kind: ValueKind


def _m(local_field: str, remote_column_id: str, kind: ValueKind) -> ColumnMapping:
    return ColumnMapping(local_field=local_field, remote_column_id=remote_column_id, value_kind=kind)


# ── Mapping Tables ──────────────────────────────────────────────────────────
# The item name itself is not a column; entity profiles build it on create.

COLUMN_MAPPINGS: dict[EntityType, tuple[ColumnMapping, ...]] = {
    EntityType.members: (
        _m("first_name", "text", ValueKind.text),
        _m("paternal_last_name", "text__1", ValueKind.text),
        _m("maternal_last_name", "text__2", ValueKind.text),
        _m("email", "email", ValueKind.email),
        _m("primary_phone", "phone", ValueKind.phone),
        _m("secondary_phone", "phone__1", ValueKind.phone),
        _m("date_of_birth", "date", ValueKind.date),
        _m("status", "status", ValueKind.status),
        _m("selected_plan", "dropdown", ValueKind.dropdown),
        _m("monthly_amount", "numbers", ValueKind.number),
        _m("start_date", "date__1", ValueKind.date),
        _m("expiration_date", "date__2", ValueKind.date),
        _m("city", "text__3", ValueKind.text),
        _m("state", "text__4", ValueKind.text),
        _m("employee", "text__5", ValueKind.text),
        _m("direct_debit", "dropdown__1", ValueKind.dropdown),
    ),
    EntityType.contracts: (
        _m("member_id", "connect_boards", ValueKind.link),
        _m("contract_type", "dropdown", ValueKind.dropdown),
        _m("start_date", "date", ValueKind.date),
        _m("end_date", "date__1", ValueKind.date),
        _m("monthly_fee", "numbers", ValueKind.number),
        _m("status", "status", ValueKind.status),
        _m("payment_method", "dropdown__1", ValueKind.dropdown),
        _m("auto_renewal", "checkbox", ValueKind.checkbox),
    ),
    EntityType.payments: (
        _m("member_id", "connect_boards", ValueKind.link),
        _m("contract_id", "connect_boards__1", ValueKind.link),
        _m("amount", "numbers", ValueKind.number),
        _m("payment_type", "dropdown", ValueKind.dropdown),
        _m("status", "status", ValueKind.status),
        _m("due_date", "date", ValueKind.date),
        _m("paid_date", "date__1", ValueKind.date),
        _m("payment_method", "dropdown__1", ValueKind.dropdown),
        _m("reference", "text", ValueKind.text),
    ),
    EntityType.employees: (
        _m("first_name", "text", ValueKind.text),
        _m("paternal_last_name", "text__1", ValueKind.text),
        _m("maternal_last_name", "text__2", ValueKind.text),
        _m("email", "email", ValueKind.email),
        _m("primary_phone", "phone", ValueKind.phone),
        _m("position", "dropdown", ValueKind.dropdown),
        _m("department", "dropdown__1", ValueKind.dropdown),
        _m("status", "status", ValueKind.status),
        _m("hire_date", "date", ValueKind.date),
        _m("access_level", "dropdown__2", ValueKind.dropdown),
        _m("salary", "numbers", ValueKind.number),
    ),
    EntityType.inventory: (
        _m("brand", "text", ValueKind.text),
        _m("category", "text_mkvf142x", ValueKind.text),
        _m("price", "precio", ValueKind.number),
        _m("cost", "numbers", ValueKind.number),
        _m("stock", "stok", ValueKind.number),
        _m("supplier", "text__1", ValueKind.text),
    ),
    EntityType.schedule: (
        _m("instructor", "text", ValueKind.text),
        _m("class_type", "dropdown", ValueKind.dropdown),
        _m("start_time", "date", ValueKind.date),
        _m("end_time", "date__1", ValueKind.date),
        _m("max_capacity", "numbers", ValueKind.number),
        _m("status", "status", ValueKind.status),
    ),
}


def validate_mapping(entity_type: EntityType, mappings: tuple[ColumnMapping, ...]) -> None:
    """Raise ValueError if a local field or remote column id repeats."""
    seen_fields: set[str] = set()
    seen_columns: set[str] = set()
    for mapping in mappings:
        if mapping.local_field in seen_fields:
            raise ValueError(
                f"{entity_type.value}: local field '{mapping.local_field}' mapped twice"
            )
        if mapping.remote_column_id in seen_columns:
            raise ValueError(
                f"{entity_type.value}: remote column '{mapping.remote_column_id}' mapped twice"
            )
        seen_fields.add(mapping.local_field)
        seen_columns.add(mapping.remote_column_id)


for _entity, _mappings in COLUMN_MAPPINGS.items():
    validate_mapping(_entity, _mappings)


def get_mapping(entity_type: EntityType | str) -> tuple[ColumnMapping, ...]:
    """Mapping table for an entity type; ValueError for unknown types."""
    return COLUMN_MAPPINGS[EntityType(entity_type)]


def column_lookup(entity_type: EntityType | str) -> dict[str, ColumnMapping]:
    """Mapping table keyed by remote column id."""
    return {m.remote_column_id: m for m in get_mapping(entity_type)}
