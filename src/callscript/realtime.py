"""Live-call glue between transcripts, the state machine and dashboards.

CallScriptCoordinator gives every live call a StreamingClassifier and a
StreamingInfoExtractor, feeds them caller speech, applies agent actions, and
re-publishes machine events on a Broadcaster for connected WebSocket clients.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from callscript.classification import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_TIER1_MIN_CONFIDENCE,
    ClassifierOutput,
    StreamingClassifier,
    Tier2Classifier,
)
from callscript.extraction import StreamingInfoExtractor
from callscript.session import CapturedInfo, utcnow
from callscript.session_manager import SessionManager
from callscript.state_machine import CallStateMachine, Event
from callscript.store import SessionStoreError
from callscript.transcript import is_caller

logger = logging.getLogger(__name__)

DEFAULT_SIMULATION_PHONE = "+447700900123"


class Broadcaster:
    """Fans `{type, data, timestamp}` messages out to connected clients.

    A client is anything with an async send_text(str), e.g. a Starlette
    WebSocket. Clients whose send fails are dropped.
    """

    def __init__(self):
        self._clients: set = set()
        self._pending: set[asyncio.Task] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def connect(self, client) -> None:
        self._clients.add(client)
        logger.info("Broadcast client connected (%d total)", len(self._clients))

    def disconnect(self, client) -> None:
        self._clients.discard(client)

    @staticmethod
    def message(type_: str, data: dict) -> dict:
        return {"type": type_, "data": data, "timestamp": utcnow().isoformat()}

    async def broadcast(self, type_: str, data: dict) -> int:
        """Send to every client now. Returns how many received it."""
        text = json.dumps(self.message(type_, data), default=str)
        delivered = 0
        for client in list(self._clients):
            try:
                await client.send_text(text)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping broadcast client after failed send: %s", e)
                self._clients.discard(client)
        return delivered

    def publish(self, type_: str, data: dict) -> None:
        """Schedule a broadcast from synchronous code. Needs a running loop."""
        if not self._clients:
            return
        task = asyncio.get_running_loop().create_task(self.broadcast(type_, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled broadcast to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))


@dataclass
class ActiveCall:
    call_id: str
    phone: str
    machine: CallStateMachine
    classifier: StreamingClassifier
    extractor: StreamingInfoExtractor
    # last value pushed per captured-info field, so agent corrections stick
    applied_info: dict = field(default_factory=dict)


class CallScriptCoordinator:
    def __init__(
        self,
        sessions: SessionManager,
        broadcaster: Broadcaster | None = None,
        tier2: Tier2Classifier | None = None,
        use_tier2: bool = True,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        tier1_min_confidence: int = DEFAULT_TIER1_MIN_CONFIDENCE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.sessions = sessions
        self.broadcaster = broadcaster or Broadcaster()
        self.tier2 = tier2
        self.use_tier2 = use_tier2 and tier2 is not None
        self.debounce_ms = debounce_ms
        self.tier1_min_confidence = tier1_min_confidence
        self._sleep = sleep
        self._calls: dict[str, ActiveCall] = {}
        self._background: set[asyncio.Task] = set()

    # --- lifecycle ---

    async def initialize_call(self, call_id: str, phone: str) -> CallStateMachine:
        existing = self._active(call_id)
        if existing is not None:
            logger.info("[%s] Call script already running, returning existing", call_id)
            return existing.machine

        machine = await self.sessions.get_or_create_session(call_id, phone)
        call = self._attach(call_id, phone, machine)
        self.broadcaster.publish("callscript:session_started", {
            "callId": call_id,
            "phone": phone,
            "state": machine.to_json(),
        })
        logger.info("[%s] Call script started for %s", call_id, phone)
        return call.machine

    def _attach(self, call_id: str, phone: str, machine: CallStateMachine) -> ActiveCall:
        call = ActiveCall(
            call_id=call_id,
            phone=phone,
            machine=machine,
            classifier=StreamingClassifier(
                on_update=lambda result: self._on_classification(call_id, result),
                use_tier2=self.use_tier2,
                debounce_ms=self.debounce_ms,
                tier1_min_confidence=self.tier1_min_confidence,
                tier2=self.tier2,
                sleep=self._sleep,
            ),
            extractor=StreamingInfoExtractor(on_update=lambda info: self._on_info(call_id, info)),
        )
        self._calls[call_id] = call
        self._subscribe(call)
        return call

    def _subscribe(self, call: ActiveCall) -> None:
        machine, call_id = call.machine, call.call_id

        def forward(type_: str, with_state: bool = False):
            def handler(payload: dict):
                data = {"callId": call_id, **payload}
                if with_state:
                    data["state"] = machine.to_json()
                self.broadcaster.publish(type_, data)
            return handler

        def on_station_changed(payload: dict):
            forward("callscript:station_update", with_state=True)(payload)
            self._spawn(self._persist_quietly(call_id))

        machine.on(Event.STATION_CHANGED, on_station_changed)
        machine.on(Event.SEGMENT_CONFIRMED, forward("callscript:segment_confirmed"))
        machine.on(Event.QUALIFIED_SET, forward("callscript:qualified_set"))
        machine.on(Event.DESTINATION_SELECTED, forward("callscript:destination_selected", with_state=True))
        machine.on(Event.JOURNEY_STATION_CHANGED, forward("callscript:journey_update"))
        machine.on(Event.JOURNEY_RESET, forward("callscript:journey_reset"))
        machine.on(Event.ERROR, forward("callscript:error"))

    def _active(self, call_id: str) -> ActiveCall | None:
        """The live call, dropping it if the session manager has since evicted it."""
        call = self._calls.get(call_id)
        if call is not None and not self.sessions.has_session(call_id):
            self._detach(call)
            return None
        if call is None:
            machine = self.sessions.get_session(call_id)
            if machine is not None:
                metadata = self.sessions.get_session_metadata(call_id)
                call = self._attach(call_id, metadata.phone if metadata else "", machine)
        return call

    def _detach(self, call: ActiveCall) -> None:
        call.classifier.reset()
        call.extractor.reset()
        call.machine.remove_all_listeners()
        self._calls.pop(call.call_id, None)

    async def end_call(self, call_id: str) -> dict | None:
        """End the call and return its final state, or None if it wasn't live."""
        call = self._active(call_id)
        if call is None:
            logger.info("[%s] No active call script to end", call_id)
            return None

        final_state = call.machine.to_json()
        self._detach(call)
        await self.sessions.end_session(call_id)
        self.broadcaster.publish("callscript:session_ended", {"callId": call_id, "finalState": final_state})
        logger.info("[%s] Call script ended", call_id)
        return final_state

    def has_call(self, call_id: str) -> bool:
        return self._active(call_id) is not None

    def get_machine(self, call_id: str) -> CallStateMachine | None:
        call = self._active(call_id)
        return call.machine if call else None

    def get_call(self, call_id: str) -> ActiveCall | None:
        return self._active(call_id)

    def get_active_session_summaries(self) -> list[dict]:
        summaries = []
        for call_id in list(self._calls):
            call = self._active(call_id)
            if call is None:
                continue
            state = call.machine.to_json()
            summaries.append({
                "callId": call_id,
                "phone": call.phone,
                "currentStation": state["currentStation"],
                "detectedSegment": state["detectedSegment"],
                "createdAt": state["createdAt"],
            })
        return summaries

    # --- transcript ---

    def handle_transcript_chunk(self, call_id: str, text: str, speaker: str = "caller") -> bool:
        """Feed one transcript chunk. Returns False when the call isn't live.

        Only caller speech reaches the classifier and extractor; any chunk
        counts as activity.
        """
        call = self._active(call_id)
        if call is None:
            return False
        if is_caller(speaker):
            call.classifier.add_chunk(text)
            call.extractor.add_chunk(text)
        self.sessions.touch_session(call_id)
        return True

    def _on_classification(self, call_id: str, result: ClassifierOutput) -> None:
        call = self._calls.get(call_id)
        if call is None:
            return
        primary = result.primary
        call.machine.update_segment(primary.segment, primary.confidence, primary.signals)
        self.broadcaster.publish("callscript:segment_detected", {
            "callId": call_id,
            "segment": primary.segment.value,
            "confidence": primary.confidence,
            "signals": list(primary.signals),
            "alternates": [a.to_json() for a in result.alternates],
            "tier": primary.tier,
        })

    def _on_info(self, call_id: str, info: CapturedInfo) -> None:
        call = self._calls.get(call_id)
        if call is None:
            return
        updates = {
            key: value
            for key, value in info.to_json().items()
            if value is not None and call.applied_info.get(key) != value
        }
        if not updates:
            return
        call.applied_info.update(updates)
        applied = call.machine.update_captured_info(updates)
        self.broadcaster.publish("callscript:info_captured", {"callId": call_id, "capturedInfo": applied})

    # --- agent actions ---

    def handle_agent_action(self, call_id: str, action: str, payload: dict | None = None) -> dict:
        """Apply one agent action. Returns {success, state} or {success: False, error}."""
        call = self._active(call_id)
        if call is None:
            return {"success": False, "error": "No active session for this call"}
        machine = call.machine
        payload = payload or {}

        try:
            if action == "confirm_station":
                result = machine.confirm_station()
            elif action == "select_segment":
                if not payload.get("segment"):
                    return {"success": False, "error": "Segment is required"}
                result = machine.confirm_segment(payload["segment"])
            elif action == "set_qualified":
                if "qualified" not in payload:
                    return {"success": False, "error": "Qualified is required"}
                notes = payload.get("notes") or []
                if not isinstance(notes, list):
                    notes = [notes]
                machine.set_qualified(payload["qualified"], [str(n) for n in notes])
                result = None
            elif action == "select_destination":
                if not payload.get("destination"):
                    return {"success": False, "error": "Destination is required"}
                result = machine.select_destination(payload["destination"])
            elif action == "update_info":
                info = payload.get("info")
                if not isinstance(info, dict) or not info:
                    return {"success": False, "error": "Info is required"}
                machine.update_captured_info(info)
                result = None
            elif action == "fast_track":
                result = machine.fast_track_to_destination()
            else:
                return {"success": False, "error": f"Unknown action: {action}"}
        except Exception as e:
            logger.exception("[%s] Error handling action %s", call_id, action)
            return {"success": False, "error": str(e) or "Unknown error"}

        if result is not None and not result.success:
            return {"success": False, "error": result.error}
        self.sessions.touch_session(call_id)
        return {"success": True, "state": machine.to_json()}

    # --- simulation ---

    async def start_simulation(self, phone: str | None = None, transcript=None) -> tuple[str, CallStateMachine]:
        """Start a `sim-<ms>` call and feed it the given chunk(s) as caller speech."""
        call_id = f"sim-{int(utcnow().timestamp() * 1000)}"
        phone = phone or DEFAULT_SIMULATION_PHONE
        self.broadcaster.publish("voice:call_started", {"callSid": call_id, "phoneNumber": phone})
        machine = await self.initialize_call(call_id, phone)

        if isinstance(transcript, str):
            chunks = [transcript]
        elif isinstance(transcript, list):
            chunks = [c for c in transcript if isinstance(c, str)]
        else:
            chunks = []
        for chunk in chunks:
            self.add_simulated_chunk(call_id, chunk)
        return call_id, machine

    def add_simulated_chunk(self, call_id: str, text: str, speaker: str = "inbound") -> bool:
        if not self.handle_transcript_chunk(call_id, text, speaker):
            return False
        self.broadcaster.publish("voice:live_segment", {"callSid": call_id, "transcript": text, "isFinal": True})
        return True

    # --- background work ---

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _persist_quietly(self, call_id: str):
        try:
            await self.sessions.persist_session(call_id)
        except SessionStoreError:
            logger.error("[%s] Station change not saved", call_id)

    async def flush(self, call_id: str) -> None:
        """Run any pending classification for the call now."""
        call = self._calls.get(call_id)
        if call is not None:
            await call.classifier.flush()

    async def drain(self) -> None:
        """Wait for scheduled persists and broadcasts to finish."""
        while self._background:
            await asyncio.gather(*list(self._background))
        await self.broadcaster.drain()

    async def shutdown(self) -> None:
        for call in list(self._calls.values()):
            self._detach(call)
        await self.drain()
