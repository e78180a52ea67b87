import asyncio
from datetime import timedelta

import pytest

from callscript.session_manager import SessionManager
from callscript.state_machine import CallStateMachine
from callscript.store import SessionStoreError

from conftest import FakeStore


class GatedStore(FakeStore):
    """Records write order and holds writes for chosen calls until the gate opens."""

    def __init__(self):
        super().__init__()
        self.order = []
        self.hold = set()
        self.gate = asyncio.Event()
        self.held = asyncio.Event()

    async def upsert(self, record):
        if record["callId"] in self.hold:
            self.held.set()
            await self.gate.wait()
        self.order.append(record["callId"])
        await super().upsert(record)


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_create_writes_initial_row(self, manager, store):
        machine = await manager.create_session("c1", "+447700900123")
        assert machine.call_id == "c1"
        assert store.rows["c1"]["phone"] == "+447700900123"
        assert store.rows["c1"]["currentStation"] == "LISTEN"

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, manager, store):
        first, second = await asyncio.gather(
            manager.create_session("c1", "+44 1"),
            manager.create_session("c1", "+44 1"),
        )
        assert first is second
        assert store.upserts == 1
        assert manager.get_active_session_count() == 1

    @pytest.mark.asyncio
    async def test_create_survives_storage_failure(self, manager, store):
        store.fail_writes = True
        machine = await manager.create_session("c1", "+44 1")
        assert manager.get_session("c1") is machine
        assert store.rows == {}


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_session_touches(self, manager, clock):
        await manager.create_session("c1", "+44 1")
        clock.advance(minutes=10)
        manager.get_session("c1")
        assert manager.get_session_metadata("c1").last_activity_at == clock.now

    @pytest.mark.asyncio
    async def test_lookup_helpers(self, manager):
        await manager.create_session("c1", "+44 1")
        await manager.create_session("c2", "+44 2")
        assert manager.has_session("c2")
        assert not manager.has_session("c3")
        assert manager.get_active_session_ids() == ["c1", "c2"]
        assert manager.find_session_by_phone("+44 2").call_id == "c2"
        assert manager.find_session_by_phone("+44 9") is None
        assert manager.get_session("c3") is None

    @pytest.mark.asyncio
    async def test_clear_all(self, manager, store):
        await manager.create_session("c1", "+44 1")
        manager.clear_all()
        assert manager.get_active_session_count() == 0
        assert "c1" in store.rows


class TestPersistAndEnd:
    @pytest.mark.asyncio
    async def test_persist_writes_latest_state(self, manager, store):
        machine = await manager.create_session("c1", "+44 1")
        machine.update_captured_info({"job": "Fix tap"})
        await manager.persist_session("c1")
        assert store.rows["c1"]["capturedInfo"]["job"] == "Fix tap"
        assert store.upserts == 2

    @pytest.mark.asyncio
    async def test_persist_unknown_session_is_a_noop(self, manager, store):
        await manager.persist_session("ghost")
        assert store.upserts == 0

    @pytest.mark.asyncio
    async def test_persist_failure_propagates(self, manager, store):
        await manager.create_session("c1", "+44 1")
        store.fail_writes = True
        with pytest.raises(SessionStoreError):
            await manager.persist_session("c1")

    @pytest.mark.asyncio
    async def test_end_saves_and_evicts(self, manager, store):
        machine = await manager.create_session("c1", "+44 1")
        machine.update_captured_info({"job": "Fix tap"})
        await manager.end_session("c1")
        assert not manager.has_session("c1")
        assert manager.get_session_metadata("c1") is None
        assert store.rows["c1"]["capturedInfo"]["job"] == "Fix tap"

    @pytest.mark.asyncio
    async def test_end_evicts_even_when_save_fails(self, manager, store):
        await manager.create_session("c1", "+44 1")
        store.fail_writes = True
        await manager.end_session("c1")
        assert not manager.has_session("c1")


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_from_row(self, manager, store, clock):
        original = CallStateMachine("c1")
        original.update_captured_info({"job": "Fix boiler"})
        original.confirm_station()
        store.rows["c1"] = {**original.to_json(), "phone": "+44 1"}

        restored = await manager.restore_session("c1")
        assert restored.state.current_station == original.state.current_station
        assert restored.state.captured_info.job == "Fix boiler"
        metadata = manager.get_session_metadata("c1")
        assert metadata.phone == "+44 1"
        assert metadata.created_at == original.state.created_at
        assert metadata.last_activity_at == clock.now

    @pytest.mark.asyncio
    async def test_restore_prefers_cache(self, manager, store):
        live = await manager.create_session("c1", "+44 1")
        store.rows["c1"]["currentStation"] = "QUALIFY"
        assert await manager.restore_session("c1") is live

    @pytest.mark.asyncio
    async def test_restore_missing(self, manager):
        assert await manager.restore_session("ghost") is None
        assert not manager.has_session("ghost")

    @pytest.mark.asyncio
    async def test_restore_read_failure(self, manager, store):
        store.rows["c1"] = CallStateMachine("c1").to_json()
        store.fail_reads = True
        assert await manager.restore_session("c1") is None

    @pytest.mark.asyncio
    async def test_get_or_create(self, manager, store):
        store.rows["old"] = {**CallStateMachine("old").to_json(), "phone": "+44 1"}
        restored = await manager.get_or_create_session("old", "+44 1")
        assert manager.get_session("old") is restored
        assert store.upserts == 0

        created = await manager.get_or_create_session("new", "+44 2")
        assert created.call_id == "new"
        assert await manager.get_or_create_session("new", "+44 2") is created
        assert store.upserts == 1

    @pytest.mark.asyncio
    async def test_delete_from_db(self, manager, store):
        await manager.create_session("c1", "+44 1")
        assert await manager.delete_session_from_db("c1")
        assert manager.has_session("c1")
        store.fail_writes = True
        with pytest.raises(SessionStoreError):
            await manager.delete_session_from_db("c1")


class TestCleanup:
    @pytest.mark.asyncio
    async def test_only_stale_sessions_end(self, manager, store, clock):
        await manager.create_session("idle-1", "+44 1")
        await manager.create_session("idle-2", "+44 2")
        clock.advance(minutes=20)
        await manager.create_session("busy", "+44 3")
        manager.get_session("idle-2")
        clock.advance(minutes=15)

        assert await manager.cleanup_stale_sessions() == 1
        assert manager.get_active_session_ids() == ["idle-2", "busy"]
        assert "idle-1" in store.rows

    @pytest.mark.asyncio
    async def test_custom_max_age(self, manager, clock):
        await manager.create_session("c1", "+44 1")
        clock.advance(minutes=2)
        assert await manager.cleanup_stale_sessions(timedelta(minutes=5)) == 0
        assert await manager.cleanup_stale_sessions(timedelta(minutes=1)) == 1

    @pytest.mark.asyncio
    async def test_new_call_not_held_behind_whole_sweep(self, clock):
        store = GatedStore()
        manager = SessionManager(store, clock=clock)
        await manager.create_session("idle-1", "+44 1")
        await manager.create_session("idle-2", "+44 2")
        clock.advance(minutes=45)
        store.order.clear()
        store.hold = {"idle-1"}

        sweep = asyncio.create_task(manager.cleanup_stale_sessions())
        await store.held.wait()
        create = asyncio.create_task(manager.create_session("new", "+44 3"))
        await asyncio.sleep(0)
        store.gate.set()

        assert await sweep == 2
        await create
        assert store.order == ["idle-1", "new", "idle-2"]
        assert manager.get_active_session_ids() == ["new"]

    @pytest.mark.asyncio
    async def test_session_touched_during_sweep_survives(self, clock):
        store = GatedStore()
        manager = SessionManager(store, clock=clock)
        await manager.create_session("idle-1", "+44 1")
        await manager.create_session("idle-2", "+44 2")
        clock.advance(minutes=45)
        store.hold = {"idle-1"}

        sweep = asyncio.create_task(manager.cleanup_stale_sessions())
        await store.held.wait()
        manager.get_session("idle-2")
        store.gate.set()

        assert await sweep == 1
        assert manager.get_active_session_ids() == ["idle-2"]

    @pytest.mark.asyncio
    async def test_old_rows_deleted_live_untouched(self, manager, store, clock):
        live = CallStateMachine("live")
        live.state.created_at = clock.now - timedelta(hours=48)
        store.rows["live"] = live.to_json()
        await manager.restore_session("live")
        store.rows["old"] = {"callId": "old", "createdAt": (clock.now - timedelta(hours=30)).isoformat()}
        store.rows["new"] = {"callId": "new", "createdAt": (clock.now - timedelta(hours=1)).isoformat()}

        assert await manager.cleanup_old_db_sessions(timedelta(hours=24)) == 2
        assert set(store.rows) == {"new"}
        assert manager.has_session("live")

    @pytest.mark.asyncio
    async def test_old_rows_failure_propagates(self, manager, store):
        store.fail_writes = True
        with pytest.raises(SessionStoreError):
            await manager.cleanup_old_db_sessions()

    @pytest.mark.asyncio
    async def test_cleanup_loop_runs_and_stops(self, store, clock):
        manager = SessionManager(store, stale_after=timedelta(minutes=1),
                                 cleanup_interval=timedelta(milliseconds=10), clock=clock)
        await manager.create_session("c1", "+44 1")
        clock.advance(minutes=5)
        manager.start()
        await asyncio.sleep(0.05)
        await manager.stop_cleanup_interval()
        assert not manager.has_session("c1")
        await manager.stop_cleanup_interval()
