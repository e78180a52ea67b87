from dataclasses import dataclass

from callscript.segments import SEGMENT_CONFIGS
from callscript.session import CallState
from callscript.states import Destination, Station, TriState


@dataclass(frozen=True)
class StationPrompt:
    instruction: str
    duration: str
    prompt: str = ""
    watch_for: tuple[str, ...] = ()
    tips: tuple[str, ...] = ()


@dataclass(frozen=True)
class DestinationPrompt:
    name: str
    prompt: str
    color: str
    icon: str
    description: str


STATION_PROMPTS = {
    Station.LISTEN: StationPrompt(
        instruction="Listen to the job, capture basics",
        duration="~30 seconds",
        tips=(
            "Let them finish explaining the job",
            "Note the postcode early if mentioned",
            "Listen for segment clues (landlord, business, urgent)",
        ),
    ),
    Station.SEGMENT: StationPrompt(
        instruction="Confirm segment, one click",
        duration="~30 seconds",
        prompt="Is this a rental you own?",
        tips=(
            "If unsure, ask one clarifying question",
            "You can adjust the segment later",
            "Managing agent means PROP_MGR",
        ),
    ),
    Station.QUALIFY: StationPrompt(
        instruction="Confirm decision-maker and fit",
        duration="~30 seconds",
        prompt="And you're the owner yourself?",
        watch_for=(
            "need to check with landlord = not decision maker",
            "need to check with partner = may need callback",
            "just getting prices = BUDGET signal",
        ),
        tips=(
            "Decision-maker question is crucial",
            "A polite exit is fine for BUDGET callers",
        ),
    ),
    Station.DESTINATION: StationPrompt(
        instruction="Push to right outcome",
        duration="~30 seconds",
        prompt="I'll send you a quote now. What's your name and best email?",
        tips=(
            "State the action, don't ask permission",
            "Always get name + contact before ending",
            "Recap the job to confirm understanding",
        ),
    ),
}

DESTINATION_PROMPTS = {
    Destination.INSTANT_QUOTE: DestinationPrompt(
        name="Instant Quote",
        prompt="I'll send you a quote right now. What's the best email for that?",
        color="#22C55E",
        icon="zap",
        description="Send quote link immediately via WhatsApp/SMS",
    ),
    Destination.VIDEO_REQUEST: DestinationPrompt(
        name="Video Request",
        prompt="Could you send us a quick video of the job? It helps us give you an accurate quote.",
        color="#3B82F6",
        icon="video",
        description="Request a video to assess the job remotely",
    ),
    Destination.SITE_VISIT: DestinationPrompt(
        name="Site Visit",
        prompt="I think the best thing is for one of our team to pop round and take a look. When works for you?",
        color="#8B5CF6",
        icon="map-pin",
        description="Book a site visit for complex or trust-sensitive jobs",
    ),
    Destination.EMERGENCY_DISPATCH: DestinationPrompt(
        name="Emergency Dispatch",
        prompt="I'm getting someone to you right now. What's the address?",
        color="#EF4444",
        icon="alert-triangle",
        description="Immediate dispatch for emergencies",
    ),
    Destination.EXIT: DestinationPrompt(
        name="Polite Exit",
        prompt="I appreciate the call, but I don't think we're the right fit for what you're looking for.",
        color="#6B7280",
        icon="x",
        description="Graceful exit for budget shoppers or poor fit",
    ),
}


def _known_info(state: CallState) -> list[str]:
    info = state.captured_info
    parts = []
    if info.name:
        parts.append(f"Caller's name: {info.name}")
    if info.job:
        parts.append(f"Job: {info.job}")
    if info.postcode:
        parts.append(f"Location: {info.postcode}")
    if info.contact:
        parts.append(f"Contact: {info.contact}")
    if info.is_decision_maker is TriState.NO:
        parts.append("Not the decision maker")
    if info.is_remote is TriState.YES:
        parts.append("Caller is remote from the property")
    if info.has_tenant is TriState.YES:
        parts.append("Property has a tenant")
    return parts


def get_station_guidance(state: CallState) -> dict:
    """Guidance for the agent at the current station.

    At DESTINATION the prompt is the one for the chosen (or recommended) outcome.
    """
    station_prompt = STATION_PROMPTS[state.current_station]
    prompt = station_prompt.prompt
    destination = state.selected_destination or state.recommended_destination
    if state.current_station == Station.DESTINATION and destination is not None:
        prompt = DESTINATION_PROMPTS[destination].prompt

    segment_tip = None
    if state.detected_segment is not None:
        segment_tip = SEGMENT_CONFIGS[state.detected_segment].one_liner

    return {
        "station": state.current_station.value,
        "instruction": station_prompt.instruction,
        "duration": station_prompt.duration,
        "prompt": prompt or None,
        "watchFor": list(station_prompt.watch_for),
        "tips": list(station_prompt.tips),
        "segmentTip": segment_tip,
        "knownInfo": _known_info(state),
    }
