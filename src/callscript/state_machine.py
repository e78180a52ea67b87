import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from callscript.journeys import (
    JourneyStation,
    OptionContext,
    StationOption,
    StationType,
    get_journey_entry_station,
    get_journey_station,
    get_next_station,
    is_option_available,
)
from callscript.prompts import DESTINATION_PROMPTS, get_station_guidance
from callscript.segments import CONFIRMED_CONFIDENCE, get_default_destination
from callscript.session import FLAG_FIELDS, WIRE_KEYS, CallState, CapturedInfo, utcnow
from callscript.states import STATION_ORDER, Destination, Segment, Station, TriState, parse_enum

logger = logging.getLogger(__name__)

# camelCase or snake_case key -> CapturedInfo attribute
_INFO_KEYS = {**{k: k for k in WIRE_KEYS}, **{v: k for k, v in WIRE_KEYS.items()}}

# Destinations offered at the DESTINATION station, in display order
STANDARD_DESTINATIONS = (
    Destination.INSTANT_QUOTE,
    Destination.VIDEO_REQUEST,
    Destination.SITE_VISIT,
)


class Event(Enum):
    STATION_CHANGED = "station:changed"
    SEGMENT_DETECTED = "segment:detected"
    SEGMENT_CONFIRMED = "segment:confirmed"
    INFO_CAPTURED = "info:captured"
    QUALIFIED_SET = "qualified:set"
    DESTINATION_SELECTED = "destination:selected"
    JOURNEY_STARTED = "journey:started"
    JOURNEY_STATION_CHANGED = "journey:station:changed"
    JOURNEY_FLAG_SET = "journey:flag:set"
    JOURNEY_RESET = "journey:reset"
    ERROR = "error"


Handler = Callable[[dict], None]


@dataclass
class AdvanceCheck:
    allowed: bool
    reason: str | None = None


@dataclass
class TransitionResult:
    success: bool
    new_station: Station | None = None
    error: str | None = None

    def to_json(self) -> dict:
        data = {"success": self.success}
        if self.new_station is not None:
            data["newStation"] = self.new_station.value
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class JourneyResult:
    success: bool
    station: JourneyStation | None = None
    error: str | None = None
    destination: Destination | None = None


def _to_iso(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return utcnow()
    else:
        return utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _unique_strings(values) -> list[str]:
    if not isinstance(values, (list, tuple)):
        return []
    out = []
    for value in values:
        if isinstance(value, str) and value and value not in out:
            out.append(value)
    return out


class CallStateMachine:
    """Station flow for one call: LISTEN -> SEGMENT -> QUALIFY -> DESTINATION.

    Stations only move forward, one at a time, through confirm_station().
    fast_track_to_destination() is the only shortcut. Illegal moves come back
    as failed results and leave state untouched; nothing here raises on
    well-formed input.
    """

    def __init__(self, call_id: str):
        self._state = CallState(call_id=call_id)
        self._handlers: dict[Event, list[Handler]] = {}

    @property
    def call_id(self) -> str:
        return self._state.call_id

    @property
    def state(self) -> CallState:
        return self._state

    # --- events ---

    def on(self, event: Event | str, handler: Handler) -> None:
        self._handlers.setdefault(self._event(event), []).append(handler)

    def off(self, event: Event | str, handler: Handler) -> None:
        handlers = self._handlers.get(self._event(event), [])
        if handler in handlers:
            handlers.remove(handler)

    def remove_all_listeners(self, event: Event | str | None = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(self._event(event), None)

    @staticmethod
    def _event(event: Event | str) -> Event:
        parsed = parse_enum(Event, event)
        if parsed is None:
            raise ValueError(f"Unknown state machine event: {event!r}")
        return parsed

    def _emit(self, event: Event, payload: dict) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("[%s] Handler error for event %s", self.call_id, event.value)

    def _touch(self) -> None:
        self._state.updated_at = utcnow()

    # --- captured info ---

    def update_captured_info(self, updates: dict | CapturedInfo) -> dict:
        """Overwrite the given fields. Returns the applied updates in wire form.

        A dict may use snake_case or camelCase keys; unknown keys are ignored.
        A CapturedInfo only contributes the fields it has set.
        """
        if isinstance(updates, CapturedInfo):
            items = {name: getattr(updates, name) for name in WIRE_KEYS if updates.is_set(name)}
        elif isinstance(updates, dict):
            items = {_INFO_KEYS[k]: v for k, v in updates.items() if k in _INFO_KEYS}
        else:
            items = {}

        info = self._state.captured_info
        applied = {}
        for name, value in items.items():
            if name in FLAG_FIELDS:
                value = TriState.from_value(value)
                applied[WIRE_KEYS[name]] = value.to_json()
            else:
                if value is not None:
                    value = str(value).strip() or None
                applied[WIRE_KEYS[name]] = value
            setattr(info, name, value)

        if applied:
            self._touch()
            self._emit(Event.INFO_CAPTURED, {"updates": applied})
        return applied

    # --- segment ---

    def update_segment(self, segment: Segment | str, confidence: int, signals=()) -> bool:
        """Record a classifier result. Returns whether the segment was taken.

        The segment and confidence are replaced only when the new confidence is
        at least the stored one; signals are merged either way.
        """
        parsed = parse_enum(Segment, segment)
        if parsed is None:
            self._emit(Event.ERROR, {"message": f"Unknown segment {segment!r}"})
            return False
        confidence = max(0, min(CONFIRMED_CONFIDENCE, int(confidence)))

        state = self._state
        accepted = state.detected_segment is None or confidence >= state.segment_confidence
        if accepted:
            state.detected_segment = parsed
            state.segment_confidence = confidence
        for signal in signals or ():
            if signal and signal not in state.segment_signals:
                state.segment_signals.append(signal)
        self._touch()

        self._emit(Event.SEGMENT_DETECTED, {
            "segment": state.detected_segment.value,
            "confidence": state.segment_confidence,
            "signals": list(state.segment_signals),
            "accepted": accepted,
        })
        return accepted

    def add_segment_signal(self, signal: str) -> None:
        if signal and signal not in self._state.segment_signals:
            self._state.segment_signals.append(signal)
            self._touch()

    def confirm_segment(self, segment: Segment | str) -> TransitionResult:
        """Agent override: lock the segment at full confidence and start its journey."""
        parsed = parse_enum(Segment, segment)
        if parsed is None:
            return TransitionResult(success=False, error=f"Unknown segment: {segment}")

        state = self._state
        previous = state.detected_segment
        changed = previous is not None and previous != parsed
        if changed and state.current_journey_station is not None:
            self.reset_journey("segment_change")

        state.detected_segment = parsed
        state.segment_confidence = CONFIRMED_CONFIDENCE
        if state.current_station == Station.DESTINATION:
            state.recommended_destination = get_default_destination(parsed)
        self._touch()

        self._emit(Event.SEGMENT_CONFIRMED, {"segment": parsed.value, "previousSegment": previous.value if previous else None})

        if state.current_journey_station is None:
            self.initialize_journey(parsed)
        return TransitionResult(success=True, new_station=state.current_station)

    # --- qualification ---

    def add_qualification_note(self, note: str) -> None:
        if note and note not in self._state.qualification_notes:
            self._state.qualification_notes.append(note)
            self._touch()

    def set_qualified(self, qualified, notes=None) -> None:
        state = self._state
        state.is_qualified = TriState.from_value(qualified)
        for note in notes or ():
            if note and note not in state.qualification_notes:
                state.qualification_notes.append(note)
        self._touch()
        self._emit(Event.QUALIFIED_SET, {
            "qualified": state.is_qualified.to_json(),
            "notes": list(state.qualification_notes),
        })

    # --- stations ---

    def can_advance_to_station(self, target: Station | str) -> AdvanceCheck:
        target_station = parse_enum(Station, target)
        if target_station is None:
            return AdvanceCheck(False, f"Unknown station: {target}")

        state = self._state
        current = state.current_station
        if target_station.index <= current.index:
            return AdvanceCheck(False, "Cannot go backwards in the flow")
        if target_station.index != current.index + 1:
            return AdvanceCheck(False, "Must complete stations in order")

        if current == Station.LISTEN and not state.captured_info.job:
            return AdvanceCheck(False, "Job description not captured")
        if current == Station.SEGMENT and state.detected_segment is None:
            return AdvanceCheck(False, "Segment not confirmed")
        if current == Station.QUALIFY and not state.is_qualified.is_known:
            return AdvanceCheck(False, "Qualification not confirmed")
        return AdvanceCheck(True)

    def confirm_station(self) -> TransitionResult:
        state = self._state
        next_station = state.current_station.next
        if next_station is None:
            return TransitionResult(success=False, error="Already at final station")

        check = self.can_advance_to_station(next_station)
        if not check.allowed:
            self._emit(Event.ERROR, {"message": check.reason})
            return TransitionResult(success=False, error=check.reason)

        previous = state.current_station
        self._enter_station(next_station)
        if next_station == Station.DESTINATION and state.detected_segment is not None:
            state.recommended_destination = get_default_destination(state.detected_segment)

        self._emit(Event.STATION_CHANGED, {"from": previous.value, "to": next_station.value})
        return TransitionResult(success=True, new_station=next_station)

    def fast_track_to_destination(self) -> TransitionResult:
        """Jump straight to DESTINATION, marking every earlier station completed."""
        state = self._state
        if state.current_station == Station.DESTINATION:
            return TransitionResult(success=False, error="Already at DESTINATION")
        if not state.captured_info.job:
            return TransitionResult(success=False, error="Job description required for fast-track")

        previous = state.current_station
        state.completed_stations = [Station(name) for name in STATION_ORDER[:Station.DESTINATION.index]]
        state.current_station = Station.DESTINATION
        state.station_entered_at = utcnow()
        if state.detected_segment is not None:
            state.recommended_destination = get_default_destination(state.detected_segment)
        self._touch()

        self._emit(Event.STATION_CHANGED, {"from": previous.value, "to": Station.DESTINATION.value, "fastTrack": True})
        return TransitionResult(success=True, new_station=Station.DESTINATION)

    def _enter_station(self, station: Station) -> None:
        state = self._state
        if state.current_station not in state.completed_stations:
            state.completed_stations.append(state.current_station)
        state.current_station = station
        state.station_entered_at = utcnow()
        self._touch()

    # --- destination ---

    def select_destination(self, destination: Destination | str) -> TransitionResult:
        parsed = parse_enum(Destination, destination)
        if parsed is None:
            return TransitionResult(success=False, error=f"Unknown destination: {destination}")
        if self._state.current_station != Station.DESTINATION:
            logger.info("[%s] Destination %s selected before reaching DESTINATION", self.call_id, parsed.value)
        self._state.selected_destination = parsed
        self._touch()
        self._emit(Event.DESTINATION_SELECTED, {"destination": parsed.value})
        return TransitionResult(success=True, new_station=self._state.current_station)

    def get_available_destinations(self) -> list[dict]:
        segment = self._state.detected_segment
        default = get_default_destination(segment) if segment is not None else None

        destinations = []
        if segment == Segment.EMERGENCY:
            destinations.append(Destination.EMERGENCY_DISPATCH)
        destinations.extend(STANDARD_DESTINATIONS)
        destinations.append(Destination.EXIT)

        result = []
        for dest in destinations:
            prompt = DESTINATION_PROMPTS[dest]
            result.append({
                "destination": dest.value,
                "recommended": dest == default,
                "name": prompt.name,
                "description": prompt.description,
                "color": prompt.color,
                "icon": prompt.icon,
            })
        return result

    # --- journey ---

    def initialize_journey(self, segment: Segment) -> None:
        entry = get_journey_entry_station(segment)
        state = self._state
        state.journey_path = [entry.id]
        state.current_journey_station = entry.id
        state.journey_flags = {}
        self._touch()
        self._emit(Event.JOURNEY_STARTED, {"segment": segment.value, "entryStation": entry.id})
        self._emit(Event.JOURNEY_STATION_CHANGED, {"from": None, "to": entry.id})

    def get_current_journey_station(self) -> JourneyStation | None:
        state = self._state
        if state.detected_segment is None:
            return None
        return get_journey_station(state.detected_segment, state.current_journey_station)

    def get_journey_station_options(self, context: OptionContext | None = None) -> list[StationOption]:
        station = self.get_current_journey_station()
        if station is None or not station.options:
            return []
        ctx = context or OptionContext(is_emergency=self._state.detected_segment == Segment.EMERGENCY)
        return [opt for opt in station.options if is_option_available(opt, ctx)]

    def advance_journey(self, option_id: str | None = None) -> JourneyResult:
        """Move one step along the segment journey.

        Choice and destination stations need an option id. Success with no
        station means the journey has ended.
        """
        state = self._state
        if state.detected_segment is None:
            return JourneyResult(success=False, error="No segment confirmed")
        if state.current_journey_station is None:
            return JourneyResult(success=False, error="Journey not started")
        station = self.get_current_journey_station()
        if station is None:
            return JourneyResult(success=False, error="Current station not found")

        option = None
        if station.needs_option:
            if not option_id:
                return JourneyResult(success=False, error="Option selection required for this station type")
            option = station.get_option(option_id)
            if option is None:
                return JourneyResult(success=False, error=f"Option {option_id} not found")
            self._run_option_action(option)
            if not option.next_station:
                return JourneyResult(success=True, destination=option.destination)

        next_station = get_next_station(state.detected_segment, station.id, option_id)
        if next_station is None:
            return JourneyResult(success=True, destination=option.destination if option else None)

        previous = state.current_journey_station
        state.journey_path.append(next_station.id)
        state.current_journey_station = next_station.id
        self._touch()
        self._emit(Event.JOURNEY_STATION_CHANGED, {"from": previous, "to": next_station.id})
        return JourneyResult(success=True, station=next_station)

    def go_back_in_journey(self) -> JourneyResult:
        state = self._state
        if state.detected_segment is None:
            return JourneyResult(success=False, error="No segment confirmed")
        if len(state.journey_path) <= 1:
            return JourneyResult(success=False, error="Already at the start of the journey")

        previous_id = state.journey_path[-2]
        previous = get_journey_station(state.detected_segment, previous_id)
        if previous is None:
            return JourneyResult(success=False, error="Previous station not found")

        left = state.journey_path.pop()
        state.current_journey_station = previous_id
        self._touch()
        self._emit(Event.JOURNEY_STATION_CHANGED, {"from": left, "to": previous_id})
        return JourneyResult(success=True, station=previous)

    def reset_journey(self, reason: str = "manual_reset") -> None:
        state = self._state
        state.journey_path = []
        state.current_journey_station = None
        state.journey_flags = {}
        self._touch()
        self._emit(Event.JOURNEY_RESET, {
            "reason": reason,
            "previousSegment": state.detected_segment.value if state.detected_segment else None,
        })

    def set_journey_flag(self, key: str, value: bool | str) -> None:
        self._state.journey_flags[key] = value
        self._touch()
        self._emit(Event.JOURNEY_FLAG_SET, {"flags": {key: value}})

    def get_journey_flag(self, key: str):
        return self._state.journey_flags.get(key)

    def get_journey_flags(self) -> dict:
        return dict(self._state.journey_flags)

    def get_journey_path(self) -> list[str]:
        return list(self._state.journey_path)

    def has_active_journey(self) -> bool:
        return self._state.current_journey_station is not None

    def is_journey_complete(self) -> bool:
        station = self.get_current_journey_station()
        return station is not None and station.type == StationType.DESTINATION

    def _run_option_action(self, option: StationOption) -> None:
        if option.action == "set_flag":
            for key, value in option.payload.items():
                if isinstance(value, (bool, str)):
                    self.set_journey_flag(key, value)
        elif option.action == "capture_info":
            self.update_captured_info(dict(option.payload))
        elif option.action == "fast_track":
            self.fast_track_to_destination()

    # --- queries ---

    def has_segment(self) -> bool:
        return self._state.detected_segment is not None

    def is_qualified(self) -> bool:
        return self._state.is_qualified is TriState.YES

    def is_at_final_station(self) -> bool:
        return self._state.current_station.is_terminal

    def get_time_in_current_station(self) -> float:
        """Seconds since the current station was entered."""
        return (utcnow() - self._state.station_entered_at).total_seconds()

    def get_current_prompt(self) -> dict:
        return get_station_guidance(self._state)

    # --- snapshot / restore ---

    def get_state(self) -> CallState:
        return copy.deepcopy(self._state)

    def to_json(self) -> dict:
        s = self._state
        return {
            "callId": s.call_id,
            "currentStation": s.current_station.value,
            "completedStations": [station.value for station in s.completed_stations],
            "detectedSegment": s.detected_segment.value if s.detected_segment else None,
            "segmentConfidence": s.segment_confidence,
            "segmentSignals": list(s.segment_signals),
            "capturedInfo": s.captured_info.to_json(),
            "isQualified": s.is_qualified.to_json(),
            "qualificationNotes": list(s.qualification_notes),
            "recommendedDestination": s.recommended_destination.value if s.recommended_destination else None,
            "selectedDestination": s.selected_destination.value if s.selected_destination else None,
            "journeyPath": list(s.journey_path),
            "currentJourneyStation": s.current_journey_station,
            "journeyFlags": dict(s.journey_flags),
            "stationEnteredAt": _to_iso(s.station_entered_at),
            "createdAt": _to_iso(s.created_at),
            "updatedAt": _to_iso(s.updated_at),
        }

    @classmethod
    def from_json(cls, data) -> "CallStateMachine":
        """Rebuild a machine from a snapshot.

        Missing or malformed fields fall back to fresh-call defaults so a
        damaged record still yields a usable machine.
        """
        if not isinstance(data, dict):
            data = {}
        machine = cls(str(data.get("callId") or ""))
        s = machine._state

        s.current_station = parse_enum(Station, data.get("currentStation")) or Station.LISTEN
        # Stations only move forward, so everything before the current one was completed
        s.completed_stations = [Station(name) for name in STATION_ORDER[:s.current_station.index]]

        s.detected_segment = parse_enum(Segment, data.get("detectedSegment"))
        try:
            s.segment_confidence = max(0, min(CONFIRMED_CONFIDENCE, int(data.get("segmentConfidence") or 0)))
        except (TypeError, ValueError):
            s.segment_confidence = 0
        s.segment_signals = _unique_strings(data.get("segmentSignals"))
        s.captured_info = CapturedInfo.from_json(data.get("capturedInfo"))
        s.is_qualified = TriState.from_value(data.get("isQualified"))
        s.qualification_notes = _unique_strings(data.get("qualificationNotes"))
        s.recommended_destination = parse_enum(Destination, data.get("recommendedDestination"))
        s.selected_destination = parse_enum(Destination, data.get("selectedDestination"))

        journey_station = data.get("currentJourneyStation")
        if s.detected_segment is not None and get_journey_station(s.detected_segment, journey_station):
            s.current_journey_station = journey_station
            s.journey_path = _restore_path(data.get("journeyPath"), journey_station)
            flags = data.get("journeyFlags")
            if isinstance(flags, dict):
                s.journey_flags = {k: v for k, v in flags.items() if isinstance(v, (bool, str))}

        s.station_entered_at = _parse_datetime(data.get("stationEnteredAt"))
        s.created_at = _parse_datetime(data.get("createdAt"))
        s.updated_at = _parse_datetime(data.get("updatedAt"))
        return machine

    def reset(self) -> None:
        """Back to a fresh call with the same id. Subscribed handlers are kept."""
        self._state = CallState(call_id=self._state.call_id)


def _restore_path(path, current: str) -> list[str]:
    if not isinstance(path, list) or not path:
        return [current]
    cleaned = [p for p in path if isinstance(p, str)]
    if not cleaned or cleaned[-1] != current:
        cleaned.append(current)
    return cleaned
