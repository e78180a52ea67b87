from callscript.session import CallState, CapturedInfo
from callscript.states import Station, TriState


class TestCapturedInfo:
    def test_defaults_are_empty(self):
        info = CapturedInfo()
        assert info.job is None
        assert info.is_remote is TriState.UNKNOWN
        assert not info.is_set("job")
        assert not info.is_set("has_tenant")

    def test_merge_missing_keeps_first(self):
        info = CapturedInfo(postcode="SW11")
        filled = info.merge_missing(CapturedInfo(postcode="E1 6AN", job="Fix tap"))
        assert info.postcode == "SW11"
        assert info.job == "Fix tap"
        assert filled == ["job"]

    def test_merge_missing_fills_unknown_flags_only(self):
        info = CapturedInfo(is_remote=TriState.NO)
        info.merge_missing(CapturedInfo(is_remote=TriState.YES, has_tenant=TriState.YES))
        assert info.is_remote is TriState.NO
        assert info.has_tenant is TriState.YES

    def test_copy_is_independent(self):
        info = CapturedInfo(job="Fix tap")
        clone = info.copy()
        clone.job = "Paint wall"
        assert info.job == "Fix tap"

    def test_to_json_uses_wire_keys(self):
        data = CapturedInfo(name="Sarah", is_decision_maker=TriState.YES).to_json()
        assert data == {
            "job": None,
            "postcode": None,
            "name": "Sarah",
            "contact": None,
            "isDecisionMaker": True,
            "isRemote": None,
            "hasTenant": None,
        }

    def test_from_json_accepts_both_key_styles(self):
        info = CapturedInfo.from_json({"isRemote": True, "has_tenant": False, "job": "Fix tap"})
        assert info.is_remote is TriState.YES
        assert info.has_tenant is TriState.NO
        assert info.job == "Fix tap"

    def test_from_json_garbage(self):
        assert CapturedInfo.from_json("nope") == CapturedInfo()


class TestCallState:
    def test_fresh_state(self):
        state = CallState(call_id="c1")
        assert state.current_station == Station.LISTEN
        assert state.completed_stations == []
        assert state.is_qualified is TriState.UNKNOWN
        assert state.created_at.tzinfo is not None
