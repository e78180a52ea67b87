from callscript.validation import (
    find_keywords,
    is_valid_uk_postcode,
    match_any_keyword,
    normalize_postcode,
    validate_name,
    validate_phone,
)


class TestMatchAnyKeyword:
    def test_whole_word(self):
        assert match_any_keyword("the tap is dripping", ["tap"])

    def test_not_substring(self):
        assert not match_any_keyword("I need a taping job", ["tap"])

    def test_case_insensitive(self):
        assert match_any_keyword("LOCKED OUT of the flat", ["locked out"])


class TestFindKeywords:
    def test_keyword_order_and_dedup(self):
        found = find_keywords("tenant called, the landlord is me", ["landlord", "tenant", "landlord", "btl"])
        assert found == ["landlord", "tenant"]

    def test_empty(self):
        assert find_keywords("", ["landlord"]) == []


class TestValidateName:
    def test_valid_name(self):
        assert validate_name("Sarah") == "Sarah"

    def test_rejects_phone_number(self):
        assert validate_name("07700 900123") == ""

    def test_rejects_sentinels(self):
        assert validate_name("unknown") == ""
        assert validate_name("N/A") == ""

    def test_rejects_single_letter(self):
        assert validate_name("J") == ""

    def test_rejects_none(self):
        assert validate_name(None) == ""


class TestPostcodes:
    def test_normalize_inserts_space(self):
        assert normalize_postcode("sw112ab") == "SW11 2AB"

    def test_normalize_collapses_spacing(self):
        assert normalize_postcode("e1   6an") == "E1 6AN"

    def test_normalize_outward_only(self):
        assert normalize_postcode("sw11") == "SW11"

    def test_valid_full_and_outward(self):
        assert is_valid_uk_postcode("SW11 2AB")
        assert is_valid_uk_postcode("EC1A1BB")
        assert is_valid_uk_postcode("SW11")

    def test_invalid(self):
        assert not is_valid_uk_postcode("INVALID")
        assert not is_valid_uk_postcode("")
        assert not is_valid_uk_postcode(None)


class TestValidatePhone:
    def test_mobile_with_spaces(self):
        assert validate_phone("07700 900 123") == "07700900123"

    def test_international(self):
        assert validate_phone("+44 7700 900123") == "+447700900123"

    def test_rejects_short(self):
        assert validate_phone("0123") == ""
