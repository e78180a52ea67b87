import pytest

from callscript.segments import (
    MAX_PATTERN_CONFIDENCE,
    SEGMENT_CONFIGS,
    get_default_destination,
    get_segment_config,
)
from callscript.states import Destination, Segment


class TestSegmentConfigs:
    def test_every_segment_configured(self):
        assert set(SEGMENT_CONFIGS) == set(Segment)

    def test_signals_are_lowercase_and_weighted(self):
        for config in SEGMENT_CONFIGS.values():
            assert config.signals, config.segment
            for phrase, weight in config.signals:
                assert phrase == phrase.lower()
                assert 0 < weight < MAX_PATTERN_CONFIDENCE

    def test_read_only(self):
        with pytest.raises(TypeError):
            SEGMENT_CONFIGS[Segment.OAP] = None

    def test_lookups(self):
        assert get_segment_config(Segment.LANDLORD).name == "Landlord"
        assert "landlord" in get_segment_config(Segment.LANDLORD).signal_phrases
        assert get_default_destination(Segment.EMERGENCY) == Destination.EMERGENCY_DISPATCH
        assert get_default_destination(Segment.BUDGET) == Destination.EXIT
