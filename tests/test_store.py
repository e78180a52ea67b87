from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from callscript.state_machine import CallStateMachine
from callscript.store import SessionStoreError, SqlSessionStore


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    store = SqlSessionStore(f"sqlite+aiosqlite:///{tmp_path}/sessions.db")
    await store.init()
    yield store
    await store.close()


def record_for(call_id: str, phone: str = "+447700900123", created_at: datetime | None = None) -> dict:
    machine = CallStateMachine(call_id)
    if created_at is not None:
        machine.state.created_at = created_at
    return {**machine.to_json(), "phone": phone}


class TestSqlSessionStore:
    @pytest.mark.asyncio
    async def test_get_missing(self, sql_store):
        assert await sql_store.get("nope") is None

    @pytest.mark.asyncio
    async def test_upsert_then_get(self, sql_store):
        machine = CallStateMachine("c1")
        machine.update_captured_info({"job": "Fix boiler", "isRemote": True})
        machine.confirm_segment("LANDLORD")
        await sql_store.upsert({**machine.to_json(), "phone": "+447700900123"})

        record = await sql_store.get("c1")
        assert record["phone"] == "+447700900123"
        assert record["detectedSegment"] == "LANDLORD"
        assert record["segmentConfidence"] == 100
        assert record["capturedInfo"]["job"] == "Fix boiler"
        assert record["capturedInfo"]["isRemote"] is True
        assert record["journeyPath"] == ["REASSURE"]
        assert record["isQualified"] is None

        restored = CallStateMachine.from_json(record)
        assert restored.to_json()["capturedInfo"] == machine.to_json()["capturedInfo"]
        assert restored.get_current_journey_station().id == "REASSURE"

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_row(self, sql_store):
        await sql_store.upsert(record_for("c1"))
        await sql_store.upsert({"callId": "c1", "currentStation": "SEGMENT", "isQualified": False})
        record = await sql_store.get("c1")
        assert record["currentStation"] == "SEGMENT"
        assert record["isQualified"] is False
        assert record["phone"] == "+447700900123"

    @pytest.mark.asyncio
    async def test_timestamps_come_back_as_utc(self, sql_store):
        created = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
        await sql_store.upsert(record_for("c1", created_at=created))
        record = await sql_store.get("c1")
        assert datetime.fromisoformat(record["createdAt"]) == created

    @pytest.mark.asyncio
    async def test_upsert_needs_call_id(self, sql_store):
        with pytest.raises(SessionStoreError):
            await sql_store.upsert({"phone": "+44"})

    @pytest.mark.asyncio
    async def test_delete(self, sql_store):
        await sql_store.upsert(record_for("c1"))
        assert await sql_store.delete("c1")
        assert not await sql_store.delete("c1")
        assert await sql_store.get("c1") is None

    @pytest.mark.asyncio
    async def test_delete_older_than_counts(self, sql_store):
        now = datetime.now(timezone.utc)
        await sql_store.upsert(record_for("old-1", created_at=now - timedelta(hours=30)))
        await sql_store.upsert(record_for("old-2", created_at=now - timedelta(hours=25)))
        await sql_store.upsert(record_for("fresh", created_at=now - timedelta(hours=1)))

        assert await sql_store.delete_older_than(now - timedelta(hours=24)) == 2
        assert await sql_store.get("fresh") is not None
        assert await sql_store.delete_older_than(now - timedelta(hours=24)) == 0


class TestErrorWrapping:
    @pytest.mark.asyncio
    async def test_driver_errors_become_store_errors(self, tmp_path, monkeypatch):
        store = SqlSessionStore(f"sqlite+aiosqlite:///{tmp_path}/sessions.db")
        await store.init()

        def broken_session():
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store, "_sessions", broken_session)
        try:
            with pytest.raises(SessionStoreError, match="Failed to read session c1"):
                await store.get("c1")
            with pytest.raises(SessionStoreError, match="Failed to write session c1"):
                await store.upsert(record_for("c1"))
            with pytest.raises(SessionStoreError):
                await store.delete_older_than(datetime.now(timezone.utc))
        finally:
            await store.close()
