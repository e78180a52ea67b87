from enum import Enum

STATION_ORDER = ("LISTEN", "SEGMENT", "QUALIFY", "DESTINATION")
TERMINAL_STATIONS = {"DESTINATION"}


class Station(Enum):
    LISTEN = "LISTEN"
    SEGMENT = "SEGMENT"
    QUALIFY = "QUALIFY"
    DESTINATION = "DESTINATION"

    @property
    def index(self) -> int:
        return STATION_ORDER.index(self.value)

    @property
    def next(self) -> "Station | None":
        if self.index + 1 >= len(STATION_ORDER):
            return None
        return Station(STATION_ORDER[self.index + 1])

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STATIONS


class Segment(Enum):
    EMERGENCY = "EMERGENCY"
    LANDLORD = "LANDLORD"
    BUSY_PRO = "BUSY_PRO"
    PROP_MGR = "PROP_MGR"
    OAP = "OAP"
    SMALL_BIZ = "SMALL_BIZ"
    BUDGET = "BUDGET"


class Destination(Enum):
    INSTANT_QUOTE = "INSTANT_QUOTE"
    VIDEO_REQUEST = "VIDEO_REQUEST"
    SITE_VISIT = "SITE_VISIT"
    EMERGENCY_DISPATCH = "EMERGENCY_DISPATCH"
    EXIT = "EXIT"


class TriState(Enum):
    """A yes/no answer that may not have been given yet."""

    YES = True
    NO = False
    UNKNOWN = None

    @property
    def is_known(self) -> bool:
        return self is not TriState.UNKNOWN

    def to_json(self) -> bool | None:
        return self.value

    @classmethod
    def from_value(cls, value) -> "TriState":
        """Accept a bool, None, an existing TriState or a loose string."""
        if isinstance(value, TriState):
            return value
        if value is True:
            return cls.YES
        if value is False:
            return cls.NO
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "1"):
                return cls.YES
            if lowered in ("false", "no", "0"):
                return cls.NO
        return cls.UNKNOWN


def parse_enum(enum_cls, value):
    """Return the enum member for a value or name, or None if it doesn't match."""
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        pass
    if isinstance(value, str):
        return enum_cls.__members__.get(value.strip().upper())
    return None
