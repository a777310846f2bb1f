"""Shared test fixtures for the sync service.

Provides:
- In-memory document store
- FakeBoardClient: in-memory board platform recording every call
- FakeClock: manual monotonic clock whose sleep advances time
- manager_factory / limiter_factory: SyncManager and RateLimiter wired to the fakes
"""

from __future__ import annotations

import itertools
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from src.gymsync.boards.errors import BoardItemNotFoundError
from src.gymsync.boards.mapping import EntityType
from src.gymsync.store.memory import InMemoryDocumentStore
from src.gymsync.sync.entities import get_profile
from src.gymsync.sync.guard import LocalSyncGuard, SyncGuard
from src.gymsync.sync.manager import SyncManager
from src.gymsync.sync.ratelimit import RateLimiter
from src.gymsync.sync.state import SyncStateStore

BOARD_IDS = {
    EntityType.members: "1001",
    EntityType.contracts: "1002",
    EntityType.payments: "1003",
    EntityType.employees: "1004",
    EntityType.inventory: "1005",
    EntityType.schedule: "1006",
}


# ── Fake Clock ───────────────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock advanced only by sleep() or advance()."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ── Fake Board Client ────────────────────────────────────────────────────────


class FakeBoardClient:
    """In-memory stand-in for BoardClient.

    Items live in ``items`` keyed by id. ``fail_next`` holds exceptions raised
    by the next mutating or reading calls, in order. ``clock`` (optional) is
    sampled on every call so pacing can be asserted.
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.items: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.call_times: list[float] = []
        self.fail_next: list[Exception] = []
        self._ids = itertools.count(5000)
        self._clock = clock

    def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self._clock is not None:
            self.call_times.append(self._clock())
        if self.fail_next:
            raise self.fail_next.pop(0)

    def calls_named(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]

    def add_item(
        self,
        board_id: str,
        name: str,
        column_values: list[dict[str, Any]] | None = None,
        item_id: str | None = None,
        state: str = "active",
    ) -> dict[str, Any]:
        item_id = item_id or str(next(self._ids))
        item = {
            "id": item_id,
            "name": name,
            "state": state,
            "board": {"id": board_id},
            "column_values": column_values or [],
        }
        self.items[item_id] = item
        return item

    async def get_item(self, item_id: str) -> dict[str, Any]:
        self._enter("get_item", item_id)
        if item_id not in self.items:
            raise BoardItemNotFoundError(item_id)
        return self.items[item_id]

    async def get_board_columns(self, board_id: str) -> list[dict[str, Any]]:
        self._enter("get_board_columns", board_id)
        return [{"id": "text", "title": "Name", "type": "text", "settings_str": "{}"}]

    async def iter_board_items(
        self,
        board_id: str,
        page_size: int = 100,
        before_request: Callable[[], Awaitable[None]] | None = None,
    ):
        board_items = [i for i in self.items.values() if i["board"]["id"] == board_id]
        for start in range(0, max(len(board_items), 1), page_size):
            if before_request:
                await before_request()
            self._enter("list_items", board_id, start)
            for item in board_items[start:start + page_size]:
                yield item

    async def test_connection(self) -> dict[str, Any]:
        self._enter("me")
        return {"id": "1", "name": "Gym Admin", "email": "admin@gym.test"}

    async def create_item(self, board_id: str, item_name: str, column_values: dict[str, Any]) -> str:
        self._enter("create_item", board_id, item_name, column_values)
        item = self.add_item(board_id, item_name)
        item["raw_column_values"] = column_values
        return item["id"]

    async def update_item(self, board_id: str, item_id: str, column_values: dict[str, Any]) -> str:
        self._enter("update_item", board_id, item_id, column_values)
        if item_id not in self.items:
            raise BoardItemNotFoundError(item_id)
        self.items[item_id]["raw_column_values"] = column_values
        return item_id

    async def archive_item(self, item_id: str) -> str:
        self._enter("archive_item", item_id)
        if item_id not in self.items:
            raise BoardItemNotFoundError(item_id)
        self.items[item_id]["state"] = "archived"
        return item_id

    async def close(self) -> None:
        return None


# ── Factories ────────────────────────────────────────────────────────────────


def make_limiter(clock: FakeClock | None = None, min_interval: float = 0.0, rpm: int = 6000) -> RateLimiter:
    clock = clock or FakeClock()
    return RateLimiter(
        requests_per_minute=rpm,
        min_interval_seconds=min_interval,
        clock=clock,
        sleep=clock.sleep,
    )


def make_manager(
    entity_type: EntityType,
    store: InMemoryDocumentStore,
    client: Any = None,
    *,
    board_id: str | None = None,
    limiter: RateLimiter | None = None,
    guard: SyncGuard | None = None,
    clock: FakeClock | None = None,
    **kwargs: Any,
) -> SyncManager:
    clock = clock or FakeClock()
    profile = get_profile(entity_type)
    return SyncManager(
        entity_type=entity_type,
        board_id=BOARD_IDS[entity_type] if board_id is None else board_id,
        client=client,
        state=SyncStateStore(store, profile.collection),
        limiter=limiter or make_limiter(clock),
        guard=guard or LocalSyncGuard(),
        clock=clock,
        **kwargs,
    )


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def board(clock) -> FakeBoardClient:
    return FakeBoardClient(clock=clock)


@pytest.fixture
def member_data() -> dict[str, Any]:
    return {
        "first_name": "Ana",
        "paternal_last_name": "Lopez",
        "maternal_last_name": "Garcia",
        "email": "ana@example.com",
        "primary_phone": "5512345678",
        "status": "Active",
        "selected_plan": "Premium",
        "monthly_amount": 799,
        "start_date": "2024-01-15",
    }


@pytest.fixture
def board_ids() -> dict[EntityType, str]:
    return dict(BOARD_IDS)


@pytest.fixture
def limiter_factory():
    """Factory for RateLimiters driven by a FakeClock."""
    return make_limiter


@pytest.fixture
def manager_factory(store, clock):
    """Factory for SyncManagers over the shared store and clock."""

    def factory(entity_type: EntityType, client: Any = None, **kwargs: Any) -> SyncManager:
        kwargs.setdefault("clock", clock)
        return make_manager(entity_type, store, client, **kwargs)

    return factory
