"""Per-segment journey graphs.

Each segment walks its own small graph of stations before reaching a quote
fork or exit. The graphs are frozen data; the helpers below only read them.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from callscript.states import Destination, Segment


class StationType(Enum):
    PROMPT = "prompt"
    CHOICE = "choice"
    INFO_CAPTURE = "info_capture"
    DESTINATION = "destination"


class Condition(Enum):
    ALWAYS = "always"
    SKU_MATCH = "sku_match"
    HAS_VIDEO = "has_video"
    EMERGENCY_TYPE = "emergency_type"


def _frozen(mapping: dict | None = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class StationOption:
    id: str
    label: str
    next_station: str | None = None
    condition: Condition = Condition.ALWAYS
    # "set_flag", "capture_info" or "fast_track"
    action: str | None = None
    payload: Mapping = field(default_factory=_frozen)
    destination: Destination | None = None


@dataclass(frozen=True)
class JourneyStation:
    id: str
    type: StationType
    label: str
    prompt: str
    description: str = ""
    next_station: str | None = None
    capture_fields: tuple[str, ...] = ()
    options: tuple[StationOption, ...] = ()

    @property
    def needs_option(self) -> bool:
        return self.type in (StationType.CHOICE, StationType.DESTINATION) and bool(self.options)

    def get_option(self, option_id: str) -> StationOption | None:
        for option in self.options:
            if option.id == option_id:
                return option
        return None


@dataclass(frozen=True)
class FinalDestination:
    destination: Destination
    label: str
    prompt: str
    condition: Condition = Condition.ALWAYS


@dataclass(frozen=True)
class SegmentJourney:
    segment: Segment
    name: str
    primary_fear: str
    entry_station: str
    stations: Mapping[str, JourneyStation]
    final_destinations: tuple[FinalDestination, ...]
    optimizations: tuple[str, ...] = ()


@dataclass(frozen=True)
class OptionContext:
    has_sku_match: bool = False
    has_video: bool = False
    is_emergency: bool = False


# --- Shared destinations ---

INSTANT_QUOTE = FinalDestination(
    Destination.INSTANT_QUOTE, "Instant Quote",
    "I'll send you a quote right now. What's the best email for that?",
    Condition.SKU_MATCH,
)
VIDEO_REQUEST = FinalDestination(
    Destination.VIDEO_REQUEST, "Video Quote",
    "Could you send us a quick video of the job? It helps us give you an accurate quote.",
)
SITE_VISIT = FinalDestination(
    Destination.SITE_VISIT, "Site Visit",
    "I think the best thing is for one of our team to pop round and take a look. When works for you?",
)
EMERGENCY_DISPATCH = FinalDestination(
    Destination.EMERGENCY_DISPATCH, "Emergency Dispatch",
    "I'm getting someone to you right now. What's the address?",
    Condition.EMERGENCY_TYPE,
)
EXIT = FinalDestination(
    Destination.EXIT, "Polite Exit",
    "I appreciate the call, but I don't think we're the right fit for what you're looking for.",
)

STANDARD_DESTINATIONS = (INSTANT_QUOTE, VIDEO_REQUEST, SITE_VISIT)


def _quote_fork(prompt: str, label: str = "Quote Options", video_label: str = "Video Quote") -> JourneyStation:
    return JourneyStation(
        id="QUOTE_FORK",
        type=StationType.DESTINATION,
        label=label,
        prompt=prompt,
        description="Route to the right quote method",
        options=(
            StationOption("instant", "Instant Quote", condition=Condition.SKU_MATCH,
                          destination=Destination.INSTANT_QUOTE),
            StationOption("video", video_label, destination=Destination.VIDEO_REQUEST),
            StationOption("visit", "Site Visit", destination=Destination.SITE_VISIT),
        ),
    )


def _flag(option_id: str, label: str, next_station: str | None, **flags) -> StationOption:
    return StationOption(option_id, label, next_station=next_station,
                         action="set_flag", payload=_frozen(flags))


def _stations(*stations: JourneyStation) -> Mapping[str, JourneyStation]:
    return _frozen({s.id: s for s in stations})


_JOURNEYS = (
    SegmentJourney(
        segment=Segment.EMERGENCY,
        name="Emergency",
        primary_fear="Will you come NOW?",
        entry_station="TYPE",
        stations=_stations(
            JourneyStation(
                id="TYPE", type=StationType.CHOICE, label="Emergency Type",
                prompt="Is this water, gas, heating, or lockout?",
                description="Identify the type of emergency to route correctly",
                options=(
                    _flag("water", "Water/Flooding", "PACKAGES", emergencyType="water"),
                    _flag("gas", "Gas Issue", "PACKAGES", emergencyType="gas"),
                    _flag("heating", "No Heating", "PACKAGES", emergencyType="heating"),
                    _flag("lockout", "Lockout", "PACKAGES", emergencyType="lockout"),
                ),
            ),
            JourneyStation(
                id="PACKAGES", type=StationType.PROMPT, label="Emergency Packages",
                prompt=("We can have someone there within 2 hours. Emergency callout is £89, "
                        "which includes the first hour. Do you want me to dispatch now?"),
                description="Show emergency pricing and availability",
                next_station="DISPATCH",
            ),
            JourneyStation(
                id="DISPATCH", type=StationType.INFO_CAPTURE, label="Dispatch Details",
                prompt="Great, I'm dispatching now. What's the full address including postcode?",
                description="Capture address and confirm ETA",
                capture_fields=("address", "postcode", "contact"),
            ),
        ),
        final_destinations=(EMERGENCY_DISPATCH, SITE_VISIT),
        optimizations=(
            "Fast track - get address NOW",
            "Skip qualification for genuine emergencies",
            "Confirm ETA immediately",
        ),
    ),
    SegmentJourney(
        segment=Segment.LANDLORD,
        name="Landlord",
        primary_fear="I can't be there",
        entry_station="REASSURE",
        stations=_stations(
            JourneyStation(
                id="REASSURE", type=StationType.PROMPT, label="Distance Pain Acknowledgment",
                prompt=("You don't need to be there. We handle everything - coordinate with your tenant, "
                        "send photos before and after, and invoice goes straight to your email."),
                next_station="MEDIA_METHOD",
            ),
            JourneyStation(
                id="MEDIA_METHOD", type=StationType.CHOICE, label="Media Method",
                prompt="How would you like us to assess the job?",
                options=(
                    _flag("you_send", "You Send Media", "QUOTE_FORK", mediaMethod="landlord_sends"),
                    _flag("tenant_sends", "Tenant Sends Media", "QUOTE_FORK",
                          mediaMethod="tenant_sends", hasTenant=True),
                    _flag("we_visit", "We Visit", "QUOTE_FORK", mediaMethod="site_visit"),
                ),
            ),
            _quote_fork("Perfect. Let me get you a quote."),
        ),
        final_destinations=STANDARD_DESTINATIONS,
        optimizations=("Mention photo proof early", "Offer tenant coordination", "They don't need to be there"),
    ),
    SegmentJourney(
        segment=Segment.BUSY_PRO,
        name="Busy Professional",
        primary_fear="Don't waste my time",
        entry_station="SPEED_PROMISE",
        stations=_stations(
            JourneyStation(
                id="SPEED_PROMISE", type=StationType.PROMPT, label="Time Respect",
                prompt="Let me make this quick - 60 seconds, quote in your inbox.",
                next_station="QUOTE_FORK",
            ),
            _quote_fork("I'll get this to you right away.", video_label="Quick Video Quote"),
        ),
        final_destinations=STANDARD_DESTINATIONS,
        optimizations=("Keep it brief", "SMS updates promise", "Key safe option"),
    ),
    SegmentJourney(
        segment=Segment.PROP_MGR,
        name="Property Manager",
        primary_fear="Will you be reliable?",
        entry_station="RECOGNITION",
        stations=_stations(
            JourneyStation(
                id="RECOGNITION", type=StationType.PROMPT, label="Portfolio Acknowledgment",
                prompt=("Managing multiple properties? We work with agencies like yours. Consistent pricing, "
                        "same-day invoices, and you get a dedicated contact."),
                next_station="QUOTE_FORK",
            ),
            _quote_fork("Let me get you a quote for this job."),
        ),
        final_destinations=STANDARD_DESTINATIONS,
        optimizations=("Mention SLA", "Same-day invoicing", "Photo reports for all jobs"),
    ),
    SegmentJourney(
        segment=Segment.OAP,
        name="Trust Seeker",
        primary_fear="Can I trust you?",
        entry_station="TRUST_BUILD",
        stations=_stations(
            JourneyStation(
                id="TRUST_BUILD", type=StationType.PROMPT, label="Trust Building",
                prompt="We're fully insured - £2M. All team DBS checked. We've been doing this for 10 years.",
                next_station="COMFORT",
            ),
            JourneyStation(
                id="COMFORT", type=StationType.CHOICE, label="Comfort Options",
                prompt=("Would you like someone to pop round first? No charge, just to put a face "
                        "to the name and give you a proper quote."),
                options=(
                    StationOption("free_visit", "Yes, Please Visit", action="set_flag",
                                  payload=_frozen({"prefersFreeVisit": True}),
                                  destination=Destination.SITE_VISIT),
                    StationOption("proceed", "No, Let's Proceed", next_station="QUOTE_FORK"),
                ),
            ),
            _quote_fork("Let me explain how we work. I'll send you all the details."),
        ),
        final_destinations=(SITE_VISIT, VIDEO_REQUEST, INSTANT_QUOTE),
        optimizations=("Slow down - don't rush", "Lead with DBS and insurance", "Offer free visit proactively"),
    ),
    SegmentJourney(
        segment=Segment.SMALL_BIZ,
        name="Small Business",
        primary_fear="Don't disrupt my business",
        entry_station="ZERO_DISRUPTION",
        stations=_stations(
            JourneyStation(
                id="ZERO_DISRUPTION", type=StationType.PROMPT, label="Zero Disruption Promise",
                prompt="We can work around your customers - completely invisible. Nobody will even know we're there.",
                next_station="TIMING",
            ),
            JourneyStation(
                id="TIMING", type=StationType.CHOICE, label="Timing Preference",
                prompt="Would you prefer us to come during opening hours or outside?",
                options=(
                    _flag("during_hours", "During Hours (Invisible)", "QUOTE_FORK", preferredTiming="during_hours"),
                    _flag("after_hours", "After Hours", "QUOTE_FORK", preferredTiming="after_hours"),
                ),
            ),
            _quote_fork("Let me get you a quote that works with your schedule."),
        ),
        final_destinations=STANDARD_DESTINATIONS,
        optimizations=("Zero disruption promise", "After hours option", "Quick turnaround"),
    ),
    SegmentJourney(
        segment=Segment.BUDGET,
        name="Budget Shopper",
        primary_fear="Too expensive",
        entry_station="VALUE_CHECK",
        stations=_stations(
            JourneyStation(
                id="VALUE_CHECK", type=StationType.CHOICE, label="Value vs Cheapest",
                prompt="Looking for the cheapest option, or the best value?",
                options=(
                    _flag("cheapest", "Cheapest", "EXIT_RAMP", wantsCheapest=True),
                    _flag("value", "Best Value", "QUOTE_FORK", wantsValue=True, converted=True),
                ),
            ),
            JourneyStation(
                id="EXIT_RAMP", type=StationType.PROMPT, label="Polite Exit",
                prompt=("I appreciate the call. We're probably not the cheapest - we focus on quality "
                        "and warranty. TaskRabbit might be worth a look if price is the main factor."),
            ),
            _quote_fork("Great - let me show you what we can do. Our quotes include everything - no surprises.",
                        label="Quote Options (Converted)"),
        ),
        final_destinations=(EXIT,) + STANDARD_DESTINATIONS,
        optimizations=("Try to convert from cheapest to value", "Polite exit if they insist on cheapest"),
    ),
)

SEGMENT_JOURNEYS = MappingProxyType({j.segment: j for j in _JOURNEYS})


def get_segment_journey(segment: Segment) -> SegmentJourney:
    return SEGMENT_JOURNEYS[segment]


def get_journey_entry_station(segment: Segment) -> JourneyStation:
    journey = SEGMENT_JOURNEYS[segment]
    return journey.stations[journey.entry_station]


def get_journey_station(segment: Segment, station_id: str | None) -> JourneyStation | None:
    if station_id is None:
        return None
    return SEGMENT_JOURNEYS[segment].stations.get(station_id)


def get_next_station(segment: Segment, current_station_id: str, option_id: str | None = None) -> JourneyStation | None:
    """Station that follows `current_station_id`, or None at the end of the journey.

    Prompt and info-capture stations follow their own `next_station`; choice and
    destination stations follow the chosen option.
    """
    journey = SEGMENT_JOURNEYS[segment]
    current = journey.stations.get(current_station_id)
    if current is None:
        return None

    if current.type not in (StationType.CHOICE, StationType.DESTINATION):
        if current.next_station:
            return journey.stations.get(current.next_station)
        return None

    if option_id:
        option = current.get_option(option_id)
        if option is not None and option.next_station:
            return journey.stations.get(option.next_station)
    return None


def get_journey_destinations(segment: Segment) -> tuple[FinalDestination, ...]:
    return SEGMENT_JOURNEYS[segment].final_destinations


def is_option_available(option, context: OptionContext | None = None) -> bool:
    """Works for both station options and final destinations."""
    ctx = context or OptionContext()
    condition = option.condition
    if condition is Condition.SKU_MATCH:
        return ctx.has_sku_match
    if condition is Condition.HAS_VIDEO:
        return ctx.has_video
    if condition is Condition.EMERGENCY_TYPE:
        return ctx.is_emergency
    return True
