"""Tests for SyncManager outbound and inbound paths.

Uses the in-memory document store, FakeBoardClient and a FakeClock so
pacing and sweep deadlines can be asserted without real sleeps.
"""

from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from src.gymsync.boards.errors import BoardAPIError, BoardTransientError
from src.gymsync.boards.mapping import EntityType
from src.gymsync.config import ConfigurationError
from src.gymsync.sync.guard import LocalSyncGuard, SyncInProgressError
from src.gymsync.sync.schemas import SyncAction, WebhookEvent, WebhookEventType


def _member_item_columns(email: str) -> list[dict]:
    return [
        {"id": "email", "text": email, "value": f'{{"email": "{email}", "text": "{email}"}}'},
        {"id": "status", "text": "Active", "value": '{"index": 1}'},
        {"id": "numbers", "text": "650", "value": '"650"'},
    ]


# ── Outbound: single record ──────────────────────────────────────────────────


class TestSyncOne:
    @pytest.mark.asyncio
    async def test_creates_remote_item_for_new_record(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)

        result = await manager.sync_one(doc.id)

        assert result.success is True
        assert result.action == SyncAction.CREATED
        board_id, item_name, column_values = board.calls_named("create_item")[0]
        assert board_id == "1001"
        assert item_name == "Ana Lopez Garcia"
        assert column_values["email"] == "ana@example.com"
        stored = await manager.state.get(doc.id)
        assert stored.get("sync_status") == "synced"
        assert stored.get("remote_item_id") == result.remote_item_id

    @pytest.mark.asyncio
    async def test_repeated_sync_performs_no_extra_mutation(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)

        first = await manager.sync_one(doc.id)
        second = await manager.sync_one(doc.id)

        assert second.action == SyncAction.UNCHANGED
        assert second.remote_item_id == first.remote_item_id
        assert len(board.calls_named("create_item")) == 1
        assert board.calls_named("update_item") == []

    @pytest.mark.asyncio
    async def test_force_resends_synced_record(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        first = await manager.sync_one(doc.id)

        result = await manager.sync_one(doc.id, force=True)

        assert result.action == SyncAction.UPDATED
        assert board.calls_named("update_item")[0][1] == first.remote_item_id

    @pytest.mark.asyncio
    async def test_local_edit_updates_existing_item(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        created = await manager.sync_one(doc.id)

        await manager.record_local_change(doc.id, {"city": "Puebla"})
        result = await manager.sync_one(doc.id)

        assert result.action == SyncAction.UPDATED
        assert result.remote_item_id == created.remote_item_id
        assert board.calls_named("update_item")[0][2]["text__3"] == "Puebla"
        assert len(board.calls_named("create_item")) == 1

    @pytest.mark.asyncio
    async def test_missing_remote_item_falls_back_to_create(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.state.create(member_data, remote_item_id="404404")
        await manager.record_local_change(doc.id, {"city": "Leon"})

        result = await manager.sync_one(doc.id)

        assert result.action == SyncAction.CREATED
        assert result.remote_item_id != "404404"
        stored = await manager.state.get(doc.id)
        assert stored.get("remote_item_id") == result.remote_item_id
        assert stored.get("sync_status") == "synced"

    @pytest.mark.asyncio
    async def test_transient_failure_does_not_create_duplicate(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        created = await manager.sync_one(doc.id)
        await manager.record_local_change(doc.id, {"city": "Leon"})
        board.fail_next.append(BoardTransientError("Board API returned 503"))

        result = await manager.sync_one(doc.id)

        assert result.success is False
        assert result.action == SyncAction.FAILED
        assert len(board.calls_named("create_item")) == 1
        stored = await manager.state.get(doc.id)
        assert stored.get("sync_status") == "error"
        assert stored.get("remote_item_id") == created.remote_item_id
        assert "503" in stored.get("sync_error")

    @pytest.mark.asyncio
    async def test_permanent_error_marks_record_error(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        board.fail_next.append(BoardAPIError("Column not editable"))

        result = await manager.sync_one(doc.id)

        assert result.success is False
        assert (await manager.state.get(doc.id)).get("sync_status") == "error"

    @pytest.mark.asyncio
    async def test_call_timeout_is_a_failure(self, manager_factory, member_data):
        class HangingBoard:
            async def create_item(self, board_id, item_name, column_values):
                await asyncio.sleep(5)

        manager = manager_factory(EntityType.members, HangingBoard(), call_timeout=0.01)
        doc = await manager.create_local(member_data)

        result = await manager.sync_one(doc.id)

        assert result.action == SyncAction.FAILED
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_unknown_record_is_skipped(self, manager_factory, board):
        manager = manager_factory(EntityType.members, board)
        result = await manager.sync_one("missing")
        assert result.action == SyncAction.SKIPPED
        assert board.calls == []

    @pytest.mark.asyncio
    async def test_missing_configuration_raises(self, manager_factory, board, member_data):
        unconfigured = manager_factory(EntityType.members, board, board_id="")
        with pytest.raises(ConfigurationError, match="MEMBERS_BOARD_ID"):
            await unconfigured.sync_one("x")

        no_client = manager_factory(EntityType.members, None)
        with pytest.raises(ConfigurationError, match="BOARD_API_TOKEN"):
            await no_client.sync_one("x")


# ── Outbound: sweeps ─────────────────────────────────────────────────────────


class TestOutboundSweep:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        ids = [(await manager.create_local({**member_data, "first_name": f"M{i}"})).id for i in range(3)]

        original = board.create_item

        async def flaky_create(board_id, item_name, column_values):
            if item_name.startswith("M1"):
                raise BoardAPIError("Invalid column value")
            return await original(board_id, item_name, column_values)

        board.create_item = flaky_create
        report = await manager.sync_all_pending()

        assert report.total_processed == 3
        assert report.successful == 2
        assert report.failed == 1
        assert report.ended_at is not None
        assert (await manager.state.get(ids[1])).get("sync_status") == "error"
        assert (await manager.state.get(ids[2])).get("sync_status") == "synced"

    @pytest.mark.asyncio
    async def test_errored_records_are_retried_next_sweep(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        board.fail_next.append(BoardTransientError("timeout"))

        first = await manager.sync_all_pending()
        second = await manager.sync_all_pending()

        assert first.failed == 1
        assert second.successful == 1
        assert (await manager.state.get(doc.id)).get("sync_status") == "synced"

    @pytest.mark.asyncio
    async def test_remote_calls_are_paced(self, manager_factory, board, clock, limiter_factory, member_data):
        manager = manager_factory(EntityType.members, board, limiter=limiter_factory(clock, min_interval=0.2))
        for i in range(4):
            await manager.create_local({**member_data, "first_name": f"M{i}"})

        await manager.sync_all_pending()

        gaps = [b - a for a, b in zip(board.call_times, board.call_times[1:])]
        assert len(board.call_times) == 4
        assert all(gap >= 0.2 - 1e-9 for gap in gaps)

    @pytest.mark.asyncio
    async def test_worker_pool_shares_the_limiter(self, manager_factory, board, clock, limiter_factory, member_data):
        manager = manager_factory(
            EntityType.members,
            board,
            limiter=limiter_factory(clock, min_interval=0.2),
            max_concurrency=3,
        )
        for i in range(6):
            await manager.create_local({**member_data, "first_name": f"M{i}"})
        start = clock()

        report = await manager.sync_all_pending()

        assert report.successful == 6
        assert len(board.calls_named("create_item")) == 6
        # Six grants at least 0.2s apart span at least 1.0s of clock time.
        assert clock() - start >= 1.0 - 1e-9

    @pytest.mark.asyncio
    async def test_deadline_skips_remaining_records(self, manager_factory, board, clock, limiter_factory, member_data):
        manager = manager_factory(
            EntityType.members,
            board,
            limiter=limiter_factory(clock, min_interval=0.4),
            sweep_deadline=1.0,
        )
        ids = [(await manager.create_local({**member_data, "first_name": f"M{i}"})).id for i in range(5)]

        report = await manager.sync_all_pending()

        assert report.total_processed == 5
        assert report.successful == 4
        assert report.skipped == 1
        assert report.successful + report.failed + report.skipped == report.total_processed
        assert (await manager.state.get(ids[-1])).get("sync_status") == "pending"

    @pytest.mark.asyncio
    async def test_deadline_skips_are_counted_in_metrics(self, manager_factory, board, clock, limiter_factory, member_data):
        labels = {"entity_type": "members", "direction": "outbound", "outcome": "skipped"}
        before = REGISTRY.get_sample_value("sync_results_total", labels) or 0.0
        manager = manager_factory(
            EntityType.members,
            board,
            limiter=limiter_factory(clock, min_interval=0.4),
            sweep_deadline=1.0,
        )
        for i in range(5):
            await manager.create_local({**member_data, "first_name": f"M{i}"})

        report = await manager.sync_all_pending()

        after = REGISTRY.get_sample_value("sync_results_total", labels)
        assert after - before == report.skipped == 1

    @pytest.mark.asyncio
    async def test_concurrent_sweep_is_rejected(self, manager_factory, board, member_data):
        guard = LocalSyncGuard()
        manager = manager_factory(EntityType.members, board, guard=guard)
        await manager.create_local(member_data)

        async with guard.hold("members"):
            assert await manager.is_sync_in_progress() is True
            with pytest.raises(SyncInProgressError):
                await manager.sync_all_pending()

        assert board.calls == []
        report = await manager.sync_all_pending()
        assert report.successful == 1


# ── Inbound ──────────────────────────────────────────────────────────────────


class TestInbound:
    @pytest.mark.asyncio
    async def test_full_sync_creates_records_with_defaults(self, manager_factory, board):
        manager = manager_factory(EntityType.members, board)
        item = board.add_item("1001", "Luis Perez", _member_item_columns("luis@example.com"))

        report = await manager.full_sync_from_remote()

        assert report.successful == 1
        doc = await manager.state.find_by_remote_id(item["id"])
        assert doc.get("first_name") == "Luis"
        assert doc.get("paternal_last_name") == "Perez"
        assert doc.get("email") == "luis@example.com"
        assert doc.get("primary_phone") == "0000000000"
        assert doc.get("status") == "active"
        assert doc.get("monthly_amount") == 650
        assert doc.get("sync_status") == "synced"

    @pytest.mark.asyncio
    async def test_item_without_email_gets_placeholder(self, manager_factory, board):
        manager = manager_factory(EntityType.members, board)
        item = board.add_item("1001", "Sin Correo")

        await manager.full_sync_from_remote()

        doc = await manager.state.find_by_remote_id(item["id"])
        assert doc.get("email") == f"pending_{item['id']}@monday.com"

    @pytest.mark.asyncio
    async def test_created_then_discovered_is_not_duplicated(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        await manager.sync_one(doc.id)

        report = await manager.full_sync_from_remote()

        assert report.results[0].action == SyncAction.UPDATED
        assert report.results[0].local_id == doc.id
        assert await manager.state.count() == 1

    @pytest.mark.asyncio
    async def test_archived_item_soft_deletes(self, manager_factory, board):
        manager = manager_factory(EntityType.payments, board)
        doc = await manager.state.create({"amount": 500, "status": "paid"}, remote_item_id="321")
        board.add_item("1003", "Pago enero", item_id="321", state="archived")

        report = await manager.full_sync_from_remote()

        assert report.results[0].action == SyncAction.DELETED
        stored = await manager.state.get(doc.id)
        assert stored.get("status") == "cancelled"

    @pytest.mark.asyncio
    async def test_inbound_sweep_is_paced(self, manager_factory, board, clock, limiter_factory):
        manager = manager_factory(
            EntityType.inventory, board, limiter=limiter_factory(clock, min_interval=0.5), page_size=2
        )
        for i in range(5):
            board.add_item("1005", f"Producto {i}")

        report = await manager.full_sync_from_remote()

        assert report.successful == 5
        assert len(board.calls_named("list_items")) == 3
        gaps = [b - a for a, b in zip(board.call_times, board.call_times[1:])]
        assert all(gap >= 0.5 - 1e-9 for gap in gaps)

    @pytest.mark.asyncio
    async def test_listing_failure_is_reported(self, manager_factory, board):
        manager = manager_factory(EntityType.members, board)
        board.fail_next.append(BoardTransientError("Board API returned 500"))

        report = await manager.full_sync_from_remote()

        assert report.listing_error == "Board API returned 500"
        assert report.total_processed == 0
        assert report.failed == 0
        assert report.ended_at is not None

    @pytest.mark.asyncio
    async def test_sync_one_from_remote_missing_item(self, manager_factory, board):
        manager = manager_factory(EntityType.members, board)
        result = await manager.sync_one_from_remote("999")
        assert result.action == SyncAction.SKIPPED
        assert result.error == "not found"


class TestApplyRemoteEvent:
    def _event(self, event_type: WebhookEventType, item_id: str = "77", **kwargs) -> WebhookEvent:
        return WebhookEvent(event_type=event_type, board_id="1005", item_id=item_id, **kwargs)

    @pytest.mark.asyncio
    async def test_column_change_updates_single_field(self, manager_factory, board):
        manager = manager_factory(EntityType.inventory, board)
        doc = await manager.state.create({"name": "Whey", "stock": 10, "price": 450}, remote_item_id="77")

        result = await manager.apply_remote_event(
            self._event(WebhookEventType.COLUMN_VALUE_CHANGED, column_id="stok", new_value={"value": "3"})
        )

        assert result.action == SyncAction.UPDATED
        stored = await manager.state.get(doc.id)
        assert stored.get("stock") == 3
        assert stored.get("price") == 450
        assert board.calls == []

    @pytest.mark.asyncio
    async def test_name_change_updates_name_field(self, manager_factory, board):
        manager = manager_factory(EntityType.inventory, board)
        doc = await manager.state.create({"name": "Whey"}, remote_item_id="77")

        await manager.apply_remote_event(
            self._event(WebhookEventType.COLUMN_VALUE_CHANGED, column_id="name", new_value="Whey Gold")
        )

        assert (await manager.state.get(doc.id)).get("name") == "Whey Gold"

    @pytest.mark.asyncio
    async def test_unknown_item_is_fetched_and_created(self, manager_factory, board):
        manager = manager_factory(EntityType.inventory, board)
        board.add_item("1005", "Creatina", [{"id": "stok", "text": "8", "value": '"8"'}], item_id="77")

        result = await manager.apply_remote_event(self._event(WebhookEventType.ITEM_CREATED, item_name="Creatina"))

        assert result.action == SyncAction.CREATED
        doc = await manager.state.find_by_remote_id("77")
        assert doc.get("name") == "Creatina"
        assert doc.get("stock") == 8
        assert board.calls_named("get_item") == [("77",)]

    @pytest.mark.asyncio
    async def test_created_without_client_uses_event_data(self, manager_factory):
        manager = manager_factory(EntityType.inventory, None)

        result = await manager.apply_remote_event(self._event(WebhookEventType.ITEM_CREATED, item_name="Creatina"))

        assert result.action == SyncAction.CREATED
        doc = await manager.state.find_by_remote_id("77")
        assert doc.get("name") == "Creatina"
        assert doc.get("stock") == 0

    @pytest.mark.asyncio
    async def test_delete_event_soft_deletes(self, manager_factory):
        manager = manager_factory(EntityType.inventory, None)
        doc = await manager.state.create({"name": "Whey", "status": "active"}, remote_item_id="77")

        result = await manager.apply_remote_event(self._event(WebhookEventType.ITEM_DELETED))

        assert result.action == SyncAction.DELETED
        assert (await manager.state.get(doc.id)).get("status") == "inactive"

    @pytest.mark.asyncio
    async def test_delete_of_unknown_item_is_skipped(self, manager_factory):
        manager = manager_factory(EntityType.inventory, None)
        result = await manager.apply_remote_event(self._event(WebhookEventType.ITEM_DELETED, item_id="1"))
        assert result.action == SyncAction.SKIPPED


# ── Archive, Bidirectional, Stats ────────────────────────────────────────────


class TestArchiveAndStatus:
    @pytest.mark.asyncio
    async def test_archive_remote(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        synced = await manager.sync_one(doc.id)

        result = await manager.archive_remote(doc.id)

        assert result.action == SyncAction.DELETED
        assert board.items[synced.remote_item_id]["state"] == "archived"
        assert (await manager.state.get(doc.id)).get("status") == "inactive"

    @pytest.mark.asyncio
    async def test_archive_item_already_gone(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.state.create(member_data, remote_item_id="404404")

        result = await manager.archive_remote(doc.id)

        assert result.action == SyncAction.DELETED
        assert board.calls_named("archive_item") == [("404404",)]
        assert (await manager.state.get(doc.id)).get("status") == "inactive"

    @pytest.mark.asyncio
    async def test_failed_archive_is_retried_by_next_sweep(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        item_id = (await manager.sync_one(doc.id)).remote_item_id
        board.fail_next.append(BoardTransientError("Board API returned 503"))

        failed = await manager.archive_remote(doc.id)

        assert failed.action == SyncAction.FAILED
        stored = await manager.state.get(doc.id)
        assert stored.get("status") == "inactive"
        assert stored.get("archive_pending") is True
        assert stored.get("sync_status") == "error"

        report = await manager.sync_all_pending()

        assert [r.action for r in report.results] == [SyncAction.DELETED]
        assert board.items[item_id]["state"] == "archived"
        assert len(board.calls_named("archive_item")) == 2
        assert board.calls_named("update_item") == []
        stored = await manager.state.get(doc.id)
        assert stored.get("archive_pending") is False
        assert stored.get("sync_status") == "synced"

    @pytest.mark.asyncio
    async def test_inbound_update_does_not_revive_record_awaiting_archive(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        doc = await manager.create_local(member_data)
        item_id = (await manager.sync_one(doc.id)).remote_item_id
        board.fail_next.append(BoardTransientError("Board API returned 503"))
        await manager.archive_remote(doc.id)

        item = {**board.items[item_id], "column_values": _member_item_columns("ana.com")}
        await manager.apply_remote_item(item)

        stored = await manager.state.get(doc.id)
        assert stored.get("status") == "inactive"
        assert stored.get("archive_pending") is True

    @pytest.mark.asyncio
    async def test_bidirectional_pushes_then_pulls(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        await manager.create_local(member_data)
        board.add_item("1001", "Luis Perez", _member_item_columns("luis@example.com"))

        outbound, inbound = await manager.perform_bidirectional_sync()

        assert outbound.direction == "outbound"
        assert outbound.successful == 1
        assert inbound.direction == "inbound"
        assert inbound.total_processed == 2
        assert await manager.state.count() == 2

    @pytest.mark.asyncio
    async def test_stats(self, manager_factory, board, member_data):
        manager = manager_factory(EntityType.members, board)
        await manager.create_local(member_data)
        synced = await manager.create_local(member_data)
        await manager.sync_one(synced.id)

        stats = await manager.stats()

        assert stats.entity_type == "members"
        assert stats.total == 2
        assert stats.pending == 1
        assert stats.synced == 1
        assert stats.error == 0
        assert stats.in_progress is False
