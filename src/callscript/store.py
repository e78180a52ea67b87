"""Durable storage for call state, keyed by call id.

One row per call in `live_call_sessions`. Rows are written from and read
back into the camelCase record produced by CallStateMachine.to_json(),
plus the caller's phone.
"""

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from callscript.session import utcnow

logger = logging.getLogger(__name__)


class SessionStoreError(Exception):
    """A read or write against session storage failed."""


class SessionStore(Protocol):
    async def init(self) -> None: ...

    async def get(self, call_id: str) -> dict | None: ...

    async def upsert(self, record: dict) -> None: ...

    async def delete(self, call_id: str) -> bool: ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...

    async def close(self) -> None: ...


class Base(DeclarativeBase):
    pass


class LiveCallSession(Base):
    __tablename__ = "live_call_sessions"

    call_id: Mapped[str] = mapped_column(String, primary_key=True)
    phone: Mapped[str] = mapped_column(String, default="", nullable=False)
    current_station: Mapped[str] = mapped_column(String, default="LISTEN", nullable=False)
    completed_stations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    detected_segment: Mapped[str | None] = mapped_column(String)
    segment_confidence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    segment_signals: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    captured_info: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    is_qualified: Mapped[bool | None] = mapped_column(Boolean)
    qualification_notes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    recommended_destination: Mapped[str | None] = mapped_column(String)
    selected_destination: Mapped[str | None] = mapped_column(String)
    journey_path: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    current_journey_station: Mapped[str | None] = mapped_column(String)
    journey_flags: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    station_entered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# record key -> column attribute
_COLUMNS = {
    "phone": "phone",
    "currentStation": "current_station",
    "completedStations": "completed_stations",
    "detectedSegment": "detected_segment",
    "segmentConfidence": "segment_confidence",
    "segmentSignals": "segment_signals",
    "capturedInfo": "captured_info",
    "isQualified": "is_qualified",
    "qualificationNotes": "qualification_notes",
    "recommendedDestination": "recommended_destination",
    "selectedDestination": "selected_destination",
    "journeyPath": "journey_path",
    "currentJourneyStation": "current_journey_station",
    "journeyFlags": "journey_flags",
}
_TIMESTAMPS = {
    "stationEnteredAt": "station_entered_at",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def _as_utc(value) -> datetime | None:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def row_to_record(row: LiveCallSession) -> dict:
    record = {"callId": row.call_id}
    for key, attr in _COLUMNS.items():
        record[key] = getattr(row, attr)
    for key, attr in _TIMESTAMPS.items():
        value = _as_utc(getattr(row, attr))
        record[key] = value.isoformat() if value else None
    return record


class SqlSessionStore:
    """SessionStore over SQLAlchemy's asyncio engine.

    Any driver SQLAlchemy supports works; sqlite+aiosqlite is the default.
    Every failure surfaces as SessionStoreError.
    """

    def __init__(self, url: str, echo: bool = False, engine: AsyncEngine | None = None):
        self.url = url
        self.engine = engine or create_async_engine(url, echo=echo, pool_pre_ping=True)
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    async def init(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to initialise session storage: {e}") from e

    async def close(self) -> None:
        await self.engine.dispose()

    async def get(self, call_id: str) -> dict | None:
        try:
            async with self._sessions() as session:
                row = await session.get(LiveCallSession, call_id)
                return row_to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to read session {call_id}: {e}") from e

    async def upsert(self, record: dict) -> None:
        call_id = record.get("callId")
        if not call_id:
            raise SessionStoreError("Cannot store a session without a callId")
        try:
            async with self._sessions() as session:
                async with session.begin():
                    row = await session.get(LiveCallSession, call_id)
                    if row is None:
                        row = LiveCallSession(call_id=call_id)
                        session.add(row)
                    for key, attr in _COLUMNS.items():
                        if key in record:
                            setattr(row, attr, record[key])
                    for key, attr in _TIMESTAMPS.items():
                        value = _as_utc(record.get(key))
                        if value is not None:
                            setattr(row, attr, value)
                    row.updated_at = utcnow()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to write session {call_id}: {e}") from e

    async def delete(self, call_id: str) -> bool:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(LiveCallSession).where(LiveCallSession.call_id == call_id)
                    )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to delete session {call_id}: {e}") from e

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete rows created before `cutoff`. Returns how many went."""
        try:
            async with self._sessions() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(LiveCallSession).where(LiveCallSession.created_at < _as_utc(cutoff))
                    )
            return result.rowcount or 0
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to delete sessions older than {cutoff}: {e}") from e
