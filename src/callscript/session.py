from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone

from callscript.states import Destination, Segment, Station, TriState

TEXT_FIELDS = ("job", "postcode", "name", "contact")
FLAG_FIELDS = ("is_decision_maker", "is_remote", "has_tenant")

# snake_case attribute -> camelCase wire key
WIRE_KEYS = {
    "job": "job",
    "postcode": "postcode",
    "name": "name",
    "contact": "contact",
    "is_decision_maker": "isDecisionMaker",
    "is_remote": "isRemote",
    "has_tenant": "hasTenant",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CapturedInfo:
    job: str | None = None
    postcode: str | None = None
    name: str | None = None
    contact: str | None = None
    is_decision_maker: TriState = TriState.UNKNOWN
    is_remote: TriState = TriState.UNKNOWN
    has_tenant: TriState = TriState.UNKNOWN

    def is_set(self, name: str) -> bool:
        value = getattr(self, name)
        if name in FLAG_FIELDS:
            return value.is_known
        return value is not None

    def merge_missing(self, other: "CapturedInfo") -> list[str]:
        """Fill fields that are still empty from `other`. Returns the names filled.

        Fields that already hold a value are never overwritten.
        """
        filled = []
        for f in fields(self):
            if not self.is_set(f.name) and other.is_set(f.name):
                setattr(self, f.name, getattr(other, f.name))
                filled.append(f.name)
        return filled

    def copy(self) -> "CapturedInfo":
        return replace(self)

    def to_json(self) -> dict:
        data = {}
        for attr, key in WIRE_KEYS.items():
            value = getattr(self, attr)
            data[key] = value.to_json() if attr in FLAG_FIELDS else value
        return data

    @classmethod
    def from_json(cls, data) -> "CapturedInfo":
        if not isinstance(data, dict):
            return cls()
        info = cls()
        for attr, key in WIRE_KEYS.items():
            raw = data.get(key, data.get(attr))
            if attr in FLAG_FIELDS:
                setattr(info, attr, TriState.from_value(raw))
            elif raw is not None:
                setattr(info, attr, str(raw))
        return info


@dataclass
class CallState:
    call_id: str
    current_station: Station = Station.LISTEN
    completed_stations: list[Station] = field(default_factory=list)

    # Segment detection
    detected_segment: Segment | None = None
    segment_confidence: int = 0
    segment_signals: list[str] = field(default_factory=list)

    captured_info: CapturedInfo = field(default_factory=CapturedInfo)

    # Qualification
    is_qualified: TriState = TriState.UNKNOWN
    qualification_notes: list[str] = field(default_factory=list)

    # Outcome
    recommended_destination: Destination | None = None
    selected_destination: Destination | None = None

    # Journey through the segment's station graph
    journey_path: list[str] = field(default_factory=list)
    current_journey_station: str | None = None
    journey_flags: dict = field(default_factory=dict)

    station_entered_at: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class SessionMetadata:
    phone: str
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
