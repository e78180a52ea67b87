import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from callscript.session_manager import SessionManager
from callscript.state_machine import CallStateMachine
from callscript.store import SessionStoreError


class FakeStore:
    """In-memory SessionStore with switchable failures."""

    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.upserts = 0
        self.fail_writes = False
        self.fail_reads = False

    async def init(self):
        pass

    async def close(self):
        pass

    async def get(self, call_id):
        if self.fail_reads:
            raise SessionStoreError("read failed")
        row = self.rows.get(call_id)
        return dict(row) if row is not None else None

    async def upsert(self, record):
        if self.fail_writes:
            raise SessionStoreError("write failed")
        self.upserts += 1
        self.rows[record["callId"]] = dict(record)

    async def delete(self, call_id):
        if self.fail_writes:
            raise SessionStoreError("delete failed")
        return self.rows.pop(call_id, None) is not None

    async def delete_older_than(self, cutoff):
        if self.fail_writes:
            raise SessionStoreError("delete failed")
        old = [
            cid for cid, row in self.rows.items()
            if datetime.fromisoformat(row["createdAt"]) < cutoff
        ]
        for cid in old:
            del self.rows[cid]
        return len(old)


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def never_sleep(_seconds):
    """Sleep that never ends; debounced work only runs through flush()."""
    await asyncio.Event().wait()


@pytest.fixture
def machine():
    return CallStateMachine("call-1")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(store, clock):
    return SessionManager(store, clock=clock)
