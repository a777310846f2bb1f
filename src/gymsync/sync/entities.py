"""Per-entity sync profiles.

Each profile names the document collection for an entity type, builds the
remote item name on outbound create, fills required fields with placeholders
when an item first appears remotely, and names the soft-delete status.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.gymsync.boards.mapping import EntityType

NameBuilder = Callable[[dict[str, Any]], str]
DefaultsBuilder = Callable[[str, str], dict[str, Any]]


def _full_name(data: dict[str, Any]) -> str:
    parts = [
        data.get("first_name"),
        data.get("paternal_last_name"),
        data.get("maternal_last_name"),
    ]
    name = " ".join(str(p).strip() for p in parts if p and str(p).strip())
    return name or str(data.get("name") or data.get("email") or "")


def _split_name(item_name: str) -> dict[str, str]:
    parts = item_name.split()
    return {
        "first_name": parts[0] if parts else "Unknown",
        "paternal_last_name": " ".join(parts[1:]) or "Unknown",
    }


def _member_defaults(item_id: str, item_name: str) -> dict[str, Any]:
    return {
        **_split_name(item_name),
        "name": item_name,
        "email": f"pending_{item_id}@monday.com",
        "primary_phone": "0000000000",
        "status": "active",
    }


def _employee_defaults(item_id: str, item_name: str) -> dict[str, Any]:
    return {
        **_split_name(item_name),
        "name": item_name,
        "email": f"temp_{item_id}@example.com",
        "primary_phone": "0000000000",
        "position": "Staff",
        "department": "General",
        "access_level": "limited",
        "status": "active",
    }


def _contract_defaults(item_id: str, item_name: str) -> dict[str, Any]:
    return {
        "contract_type": "standard",
        "member_id": "unknown",
        "monthly_fee": 0,
        "status": "active",
    }


def _payment_defaults(item_id: str, item_name: str) -> dict[str, Any]:
    return {
        "member_id": "unknown",
        "amount": 0,
        "currency": "MXN",
        "payment_type": "other",
        "payment_method": "cash",
        "status": "pending",
        "reference": item_name,
    }


def _product_defaults(item_id: str, item_name: str) -> dict[str, Any]:
    return {
        "name": item_name or f"Product {item_id}",
        "price": 0,
        "stock": 0,
        "status": "active",
    }


def _class_defaults(item_id: str, item_name: str) -> dict[str, Any]:
    return {
        "class_name": item_name or f"Class {item_id}",
        "max_capacity": 0,
        "status": "active",
    }


@dataclass(frozen=True)
class EntityProfile:
    entity_type: EntityType
    collection: str
    item_name: NameBuilder
    inbound_defaults: DefaultsBuilder
    deleted_status: str = "inactive"
    name_field: str | None = None

    def build_item_name(self, local_id: str, data: dict[str, Any]) -> str:
        """Item name for outbound create, falling back to the local id."""
        return self.item_name(data).strip() or f"{self.entity_type.value}-{local_id}"


PROFILES: dict[EntityType, EntityProfile] = {
    EntityType.members: EntityProfile(
        entity_type=EntityType.members,
        collection="members",
        item_name=_full_name,
        inbound_defaults=_member_defaults,
        name_field="name",
    ),
    EntityType.employees: EntityProfile(
        entity_type=EntityType.employees,
        collection="employees",
        item_name=_full_name,
        inbound_defaults=_employee_defaults,
        name_field="name",
    ),
    EntityType.contracts: EntityProfile(
        entity_type=EntityType.contracts,
        collection="contracts",
        item_name=lambda d: " - ".join(
            str(v) for v in (d.get("member_name"), d.get("contract_type")) if v
        ),
        inbound_defaults=_contract_defaults,
    ),
    EntityType.payments: EntityProfile(
        entity_type=EntityType.payments,
        collection="payments",
        item_name=lambda d: str(d.get("reference") or d.get("concept") or ""),
        inbound_defaults=_payment_defaults,
        deleted_status="cancelled",
    ),
    EntityType.inventory: EntityProfile(
        entity_type=EntityType.inventory,
        collection="products",
        item_name=lambda d: str(d.get("name") or ""),
        inbound_defaults=_product_defaults,
        name_field="name",
    ),
    EntityType.schedule: EntityProfile(
        entity_type=EntityType.schedule,
        collection="schedule",
        item_name=lambda d: str(d.get("class_name") or ""),
        inbound_defaults=_class_defaults,
        name_field="class_name",
    ),
}


def get_profile(entity_type: EntityType | str) -> EntityProfile:
    return PROFILES[EntityType(entity_type)]
