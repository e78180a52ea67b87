"""Lifetime of live call sessions, in memory and in durable storage.

A session is a CallStateMachine plus SessionMetadata. The in-memory maps are
the source of truth while a call is live; storage is written on create
(best effort), on explicit persist (must succeed) and on end (best effort),
and read back by restore_session() after a restart or reconnect.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from callscript.session import SessionMetadata, utcnow
from callscript.state_machine import CallStateMachine
from callscript.store import SessionStore, SessionStoreError

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=30)
DEFAULT_CLEANUP_INTERVAL = timedelta(minutes=5)
DEFAULT_DB_RETENTION = timedelta(hours=24)


class SessionManager:
    def __init__(
        self,
        store: SessionStore,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        cleanup_interval: timedelta = DEFAULT_CLEANUP_INTERVAL,
        db_retention: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.stale_after = stale_after
        self.cleanup_interval = cleanup_interval
        self.db_retention = db_retention
        self._clock = clock
        self._sessions: dict[str, CallStateMachine] = {}
        self._metadata: dict[str, SessionMetadata] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: asyncio.Task | None = None

    # --- lifecycle ---

    def start(self) -> None:
        """Start the background cleanup loop. Needs a running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        logger.info("Session cleanup every %s, stale after %s", self.cleanup_interval, self.stale_after)

    async def stop_cleanup_interval(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.cleanup_interval.total_seconds())
            try:
                await self.cleanup_stale_sessions()
                if self.db_retention is not None:
                    await self.cleanup_old_db_sessions(self.db_retention)
            except Exception:
                logger.exception("Session cleanup failed")

    # --- cache ---

    async def create_session(self, call_id: str, phone: str) -> CallStateMachine:
        """Return the live session for call_id, creating it if needed.

        The initial row is written best effort: a storage failure is logged
        and the in-memory session is still returned.
        """
        async with self._lock:
            existing = self._sessions.get(call_id)
            if existing is not None:
                logger.info("Session %s already exists, returning existing", call_id)
                return existing

            machine = CallStateMachine(call_id)
            now = self._clock()
            self._sessions[call_id] = machine
            self._metadata[call_id] = SessionMetadata(phone=phone, created_at=now, last_activity_at=now)

            try:
                await self.store.upsert(self._record(call_id, machine))
                logger.info("Created session %s for %s", call_id, phone)
            except SessionStoreError as e:
                logger.error("Failed to persist new session %s: %s", call_id, e)
            return machine

    def get_session(self, call_id: str) -> CallStateMachine | None:
        machine = self._sessions.get(call_id)
        if machine is not None:
            self.touch_session(call_id)
        return machine

    def get_session_metadata(self, call_id: str) -> SessionMetadata | None:
        return self._metadata.get(call_id)

    def has_session(self, call_id: str) -> bool:
        return call_id in self._sessions

    def get_active_session_ids(self) -> list[str]:
        return list(self._sessions)

    def get_active_session_count(self) -> int:
        return len(self._sessions)

    def touch_session(self, call_id: str) -> None:
        metadata = self._metadata.get(call_id)
        if metadata is not None:
            metadata.last_activity_at = self._clock()

    def find_session_by_phone(self, phone: str) -> CallStateMachine | None:
        for call_id, metadata in self._metadata.items():
            if metadata.phone == phone:
                return self._sessions.get(call_id)
        return None

    def clear_all(self) -> None:
        self._sessions.clear()
        self._metadata.clear()

    # --- storage ---

    def _record(self, call_id: str, machine: CallStateMachine) -> dict:
        record = machine.to_json()
        metadata = self._metadata.get(call_id)
        record["phone"] = metadata.phone if metadata else ""
        return record

    async def persist_session(self, call_id: str) -> None:
        """Write the live state to storage. Raises SessionStoreError on failure."""
        machine = self._sessions.get(call_id)
        if machine is None:
            logger.warning("Cannot persist session %s: not found", call_id)
            return
        try:
            await self.store.upsert(self._record(call_id, machine))
        except SessionStoreError as e:
            logger.error("Failed to persist session %s: %s", call_id, e)
            raise

    async def end_session(self, call_id: str) -> None:
        async with self._lock:
            await self._end_locked(call_id)

    async def _end_locked(self, call_id: str) -> None:
        try:
            await self.persist_session(call_id)
        except SessionStoreError:
            logger.error("Ending session %s without a final save", call_id)
        self._sessions.pop(call_id, None)
        self._metadata.pop(call_id, None)
        logger.info("Ended session %s", call_id)

    async def restore_session(self, call_id: str) -> CallStateMachine | None:
        """Bring a session back from storage. None when there is no row or the read fails."""
        async with self._lock:
            existing = self._sessions.get(call_id)
            if existing is not None:
                return existing

            try:
                record = await self.store.get(call_id)
            except SessionStoreError as e:
                logger.error("Error restoring session %s: %s", call_id, e)
                return None
            if record is None:
                logger.info("No stored session for %s", call_id)
                return None

            machine = CallStateMachine.from_json({**record, "callId": call_id})
            self._sessions[call_id] = machine
            self._metadata[call_id] = SessionMetadata(
                phone=record.get("phone") or "",
                created_at=machine.state.created_at,
                last_activity_at=self._clock(),
            )
            logger.info("Restored session %s", call_id)
            return machine

    async def get_or_create_session(self, call_id: str, phone: str) -> CallStateMachine:
        existing = self.get_session(call_id)
        if existing is not None:
            return existing
        restored = await self.restore_session(call_id)
        if restored is not None:
            return restored
        return await self.create_session(call_id, phone)

    async def delete_session_from_db(self, call_id: str) -> bool:
        try:
            return await self.store.delete(call_id)
        except SessionStoreError as e:
            logger.error("Error deleting session %s from storage: %s", call_id, e)
            raise

    # --- cleanup ---

    def _is_stale(self, call_id: str, max_age: timedelta, now: datetime) -> bool:
        metadata = self._metadata.get(call_id)
        return metadata is not None and now - metadata.last_activity_at > max_age

    async def cleanup_stale_sessions(self, max_age: timedelta | None = None) -> int:
        """End every session idle for longer than max_age. Returns how many were ended.

        Each candidate is re-checked and ended under its own lock acquisition,
        so a session touched in the meantime survives and new calls are not
        held up behind the whole sweep.
        """
        max_age = max_age if max_age is not None else self.stale_after
        candidates = [cid for cid in list(self._metadata) if self._is_stale(cid, max_age, self._clock())]
        if not candidates:
            return 0

        cleaned = 0
        for call_id in candidates:
            async with self._lock:
                if not self._is_stale(call_id, max_age, self._clock()):
                    continue
                await self._end_locked(call_id)
            cleaned += 1

        if cleaned:
            logger.info("Cleaned up %d stale sessions", cleaned)
        return cleaned

    async def cleanup_old_db_sessions(self, max_age: timedelta = DEFAULT_DB_RETENTION) -> int:
        """Delete stored rows created more than max_age ago. Live sessions are untouched."""
        cutoff = self._clock() - max_age
        try:
            deleted = await self.store.delete_older_than(cutoff)
        except SessionStoreError as e:
            logger.error("Error cleaning up stored sessions: %s", e)
            raise
        logger.info("Deleted %d stored sessions created before %s", deleted, cutoff.isoformat())
        return deleted
