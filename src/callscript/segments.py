"""Per-segment signal tables and display data.

Read-only; shared by every live call.
"""

from dataclasses import dataclass
from types import MappingProxyType

from callscript.states import Destination, Segment

STRONG = 35
MEDIUM = 25
WEAK = 15

MAX_PATTERN_CONFIDENCE = 95
CONFIRMED_CONFIDENCE = 100


@dataclass(frozen=True)
class SegmentConfig:
    segment: Segment
    name: str
    color: str
    one_liner: str
    default_destination: Destination
    # (phrase, weight) pairs, lowercase
    signals: tuple[tuple[str, int], ...]
    disqualifiers: tuple[str, ...]
    watch_for: tuple[str, ...] = ()

    @property
    def signal_phrases(self) -> tuple[str, ...]:
        return tuple(phrase for phrase, _ in self.signals)


_CONFIGS = (
    SegmentConfig(
        segment=Segment.LANDLORD,
        name="Landlord",
        color="#22C55E",
        one_liner="Remote owner - mention photos & invoice",
        default_destination=Destination.INSTANT_QUOTE,
        signals=(
            ("landlord", STRONG), ("buy to let", STRONG), ("btl", STRONG),
            ("my rental", STRONG), ("renting out", STRONG),
            ("investment property", STRONG), ("property i own", MEDIUM),
            ("rental", MEDIUM), ("tenant", MEDIUM), ("tenants", MEDIUM),
            ("not local", WEAK),
        ),
        disqualifiers=("i live there", "i'm the tenant", "it's my home", "i'm renting"),
        watch_for=("need to check with agent -> may be PROP_MGR",),
    ),
    SegmentConfig(
        segment=Segment.BUSY_PRO,
        name="Busy Professional",
        color="#3B82F6",
        one_liner="Time-poor - mention SMS updates & key safe",
        default_destination=Destination.INSTANT_QUOTE,
        signals=(
            ("key safe", STRONG), ("won't be home", STRONG), ("at work", MEDIUM),
            ("work from home", MEDIUM), ("call me back", MEDIUM),
            ("meeting", MEDIUM), ("busy", WEAK), ("schedule", WEAK),
            ("working", WEAK), ("office", WEAK),
        ),
        disqualifiers=("i work from home", "i'm retired", "i'm always available"),
        watch_for=("how much per hour -> BUDGET signal",),
    ),
    SegmentConfig(
        segment=Segment.PROP_MGR,
        name="Property Manager",
        color="#8B5CF6",
        one_liner="Wants account - mention SLA & invoicing",
        default_destination=Destination.INSTANT_QUOTE,
        signals=(
            ("letting agent", STRONG), ("property management", STRONG),
            ("managing agent", STRONG), ("block management", STRONG),
            ("manage properties", STRONG), ("portfolio", MEDIUM),
            ("multiple units", MEDIUM), ("estate agent", MEDIUM),
            ("agency", MEDIUM),
        ),
        disqualifiers=("just one property", "my own place", "i'm the owner myself"),
        watch_for=("just one job -> treat as LANDLORD",),
    ),
    SegmentConfig(
        segment=Segment.OAP,
        name="Trust Seeker",
        color="#EC4899",
        one_liner="Trust first - offer site visit, slow down",
        default_destination=Destination.SITE_VISIT,
        signals=(
            ("careful who i let in", STRONG), ("live alone", STRONG),
            ("husband passed", STRONG), ("wife passed", STRONG),
            ("elderly", MEDIUM), ("dbs", MEDIUM), ("vetted", MEDIUM),
            ("trustworthy", MEDIUM), ("pension", MEDIUM),
            ("daughter helps", MEDIUM), ("son helps", MEDIUM),
            ("retired", WEAK),
        ),
        disqualifiers=("i'll do it myself", "i'm quite capable", "just need a quick job"),
        watch_for=("rushing them -> slow down",),
    ),
    SegmentConfig(
        segment=Segment.SMALL_BIZ,
        name="Small Business",
        color="#F97316",
        one_liner="No disruption - mention after hours option",
        default_destination=Destination.INSTANT_QUOTE,
        signals=(
            ("before we open", STRONG), ("after hours", STRONG),
            ("my shop", STRONG), ("restaurant", MEDIUM), ("salon", MEDIUM),
            ("clinic", MEDIUM), ("customers", MEDIUM), ("business", MEDIUM),
            ("close up", MEDIUM), ("shop", WEAK), ("staff", WEAK),
            ("practice", WEAK), ("office", WEAK),
        ),
        disqualifiers=("home office", "residential", "my house"),
        watch_for=("large job -> may need SITE_VISIT",),
    ),
    SegmentConfig(
        segment=Segment.EMERGENCY,
        name="Emergency",
        color="#EF4444",
        one_liner="Fast track - get address NOW",
        default_destination=Destination.EMERGENCY_DISPATCH,
        signals=(
            ("flooding", STRONG), ("burst", STRONG), ("water everywhere", STRONG),
            ("locked out", STRONG), ("emergency", STRONG), ("no heating", MEDIUM),
            ("no hot water", MEDIUM), ("boiler broken", MEDIUM),
            ("urgent", MEDIUM), ("asap", MEDIUM), ("right now", MEDIUM),
            ("leak", WEAK), ("today", WEAK),
        ),
        disqualifiers=("no rush", "whenever you can", "been like this for weeks"),
        watch_for=("not actually urgent -> regular flow",),
    ),
    SegmentConfig(
        segment=Segment.BUDGET,
        name="Budget Shopper",
        color="#6B7280",
        one_liner="Exit ramp - polite decline",
        default_destination=Destination.EXIT,
        signals=(
            ("how much per hour", STRONG), ("beat this price", STRONG),
            ("cheapest", STRONG), ("quote shopping", STRONG),
            ("hourly rate", MEDIUM), ("day rate", MEDIUM),
            ("too expensive", MEDIUM), ("other quotes", MEDIUM),
            ("just a quick cheap", MEDIUM), ("cheaper", WEAK),
        ),
        disqualifiers=("done properly", "quality work", "price doesn't matter"),
        watch_for=("actually wants quality -> recover to segment",),
    ),
)

SEGMENT_CONFIGS = MappingProxyType({c.segment: c for c in _CONFIGS})


def get_segment_config(segment: Segment) -> SegmentConfig:
    return SEGMENT_CONFIGS[segment]


def get_default_destination(segment: Segment) -> Destination:
    return SEGMENT_CONFIGS[segment].default_destination
