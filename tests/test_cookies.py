"""
Cookie codec: Set-Cookie rendering, Cookie parsing, CookieJar.
"""

import pytest

from latchkey.cookies import (
    DELETED_VALUE,
    CookieHeader,
    CookieJar,
    CookieNameInvalidFault,
    CookieValueInvalidFault,
    format_cookie_date,
    parse_cookies,
    render_cookie,
    set_cookie_header,
)
from latchkey.faults import FaultDomain

NOW = 1700000000  # Tue, 14 Nov 2023 22:13:20 GMT


# ============================================================================
# Date formatting
# ============================================================================

class TestCookieDate:

    def test_epoch(self):
        assert format_cookie_date(0) == "Thu, 01-Jan-1970 00:00:00 GMT"

    def test_known_timestamp(self):
        assert format_cookie_date(NOW) == "Tue, 14-Nov-2023 22:13:20 GMT"

    def test_fractional_seconds_truncated(self):
        assert format_cookie_date(NOW + 0.9) == "Tue, 14-Nov-2023 22:13:20 GMT"


# ============================================================================
# Rendering
# ============================================================================

class TestRenderCookie:

    def test_name_value_only(self):
        assert render_cookie("SESSID", "abc") == "SESSID=abc"

    def test_full_field_order(self):
        header = render_cookie(
            "SESSID", "abc", NOW, "/", "example.com", True, True,
        )
        assert header == (
            "SESSID=abc; expires=Tue, 14-Nov-2023 22:13:20 GMT; "
            "path=/; domain=example.com; secure; httponly"
        )

    @pytest.mark.parametrize("expires", [0, -1, -NOW])
    def test_non_positive_expiry_is_session_cookie(self, expires):
        assert render_cookie("SESSID", "abc", expires, "/") == "SESSID=abc; path=/"

    def test_optional_fields_omitted(self):
        assert render_cookie("a", "b", path=None, domain=None) == "a=b"

    def test_flags_only_when_true(self):
        assert render_cookie("a", "b", secure=False, httponly=True) == "a=b; httponly"
        assert render_cookie("a", "b", secure=True) == "a=b; secure"

    def test_value_percent_encoded(self):
        assert render_cookie("a", "hello world&x=/") == "a=hello+world%26x%3D%2F"

    def test_raw_value_verbatim(self):
        assert render_cookie("a", "x=y%20", raw=True) == "a=x=y%20"

    def test_deletion(self):
        header = render_cookie("SESSID", "", NOW + 9999, "/", now=NOW)
        assert header == "SESSID=deleted; expires=Mon, 14-Nov-2022 22:13:19 GMT; path=/"

    def test_deletion_with_none_value(self):
        header = render_cookie("SESSID", None, now=NOW)
        assert header.startswith(f"SESSID={DELETED_VALUE}; expires=")

    def test_deletion_keeps_scope_and_flags(self):
        header = render_cookie("s", "", 0, "/app", "example.com", True, True, now=NOW)
        assert header == (
            "s=deleted; expires=Mon, 14-Nov-2022 22:13:19 GMT; "
            "path=/app; domain=example.com; secure; httponly"
        )

    @pytest.mark.parametrize("char", ["=", ",", ";", " ", "\t", "\r", "\n", "\013", "\014"])
    def test_forbidden_name_characters(self, char):
        with pytest.raises(CookieNameInvalidFault) as exc:
            render_cookie(f"bad{char}name", "value")
        assert exc.value.name == f"bad{char}name"

    @pytest.mark.parametrize("char", [",", ";", " ", "\t", "\r", "\n", "\013", "\014"])
    def test_forbidden_raw_value_characters(self, char):
        with pytest.raises(CookieValueInvalidFault):
            render_cookie("name", f"bad{char}value", raw=True)

    def test_forbidden_value_characters_encoded_when_not_raw(self):
        assert render_cookie("name", "a;b") == "name=a%3Bb"

    def test_set_cookie_header_pair(self):
        header = set_cookie_header("a", "b", path="/")
        assert header == CookieHeader("Set-Cookie", "a=b; path=/")
        assert header.name == "Set-Cookie"

    def test_fault_metadata(self):
        with pytest.raises(CookieNameInvalidFault) as exc:
            render_cookie("a=b", "c")
        fault = exc.value
        assert fault.code == "COOKIE_NAME_INVALID"
        assert fault.domain == FaultDomain.SECURITY
        assert fault.retryable is False


# ============================================================================
# Parsing
# ============================================================================

class TestParseCookies:

    def test_basic(self):
        assert parse_cookies("a=1; b=two") == {"a": "1", "b": "two"}

    def test_percent_and_plus_decoded(self):
        assert parse_cookies("a=hello+world; b=%2Fpath") == {"a": "hello world", "b": "/path"}

    def test_splits_on_first_equals(self):
        assert parse_cookies("token=a=b=c") == {"token": "a=b=c"}

    def test_missing_or_empty_header(self):
        assert parse_cookies(None) == {}
        assert parse_cookies("") == {}

    def test_malformed_pairs_skipped(self):
        assert parse_cookies("novalue; =orphan; ok=1; empty=") == {"ok": "1", "empty": ""}

    def test_later_duplicate_wins(self):
        assert parse_cookies("a=1; a=2") == {"a": "2"}

    @pytest.mark.parametrize("value", ["abc123", "hello world", "ünïcode/ä", "a=b", "50%+off"])
    def test_round_trip(self, value):
        pair = render_cookie("name", value).split("; ")[0]
        assert parse_cookies(pair) == {"name": value}


# ============================================================================
# CookieJar
# ============================================================================

class TestCookieJar:

    def test_mapping_from_header(self):
        jar = CookieJar("SESSID=abc; theme=dark")
        assert jar["SESSID"] == "abc"
        assert len(jar) == 2
        assert set(jar) == {"SESSID", "theme"}
        assert jar.get("missing") is None

    def test_mapping_from_dict(self):
        jar = CookieJar({"a": "1"})
        assert dict(jar) == {"a": "1"}

    def test_read_only(self):
        jar = CookieJar("a=1")
        with pytest.raises(TypeError):
            jar["a"] = "2"
        with pytest.raises(TypeError):
            del jar["a"]

    def test_no_headers_initially(self):
        assert CookieJar("a=1").headers() == []

    def test_set_cookie_queues_header_and_updates_value(self):
        jar = CookieJar()
        jar.set_cookie("SESSID", "abc", path="/")
        assert jar["SESSID"] == "abc"
        assert jar.headers() == [CookieHeader("Set-Cookie", "SESSID=abc; path=/")]

    def test_same_name_replaces_queued_header(self):
        jar = CookieJar()
        jar.set_cookie("SESSID", "first")
        jar.set_cookie("other", "x")
        jar.set_cookie("SESSID", "second")
        assert [h.value for h in jar.headers()] == ["other=x", "SESSID=second"]

    def test_empty_value_removes_cookie(self):
        jar = CookieJar("SESSID=abc")
        jar.set_cookie("SESSID", "", now=NOW)
        assert "SESSID" not in jar
        assert jar.headers()[0].value.startswith("SESSID=deleted")

    def test_set_raw_cookie_validates(self):
        jar = CookieJar()
        with pytest.raises(CookieValueInvalidFault):
            jar.set_raw_cookie("a", "b c")
        assert jar.headers() == []
