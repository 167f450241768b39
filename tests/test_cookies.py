"""Tests for cookies, the in-memory jar and the file-backed jar."""

import json
import time
from unittest.mock import MagicMock

import pytest

from clearance._cookies import (
    ClientCookieStore,
    Cookie,
    CookieJar,
    FileCookieJar,
    _parse_cookie_expires,
    extract_domain,
    parse_set_cookie,
    parse_set_cookies,
)
from tests.conftest import AsyncMockClient

# Far-future expiry for tests that don't care about TTL behavior.
_FUTURE = time.time() + 86400


def _cookie(name="cf_clearance", value="abc", **kwargs):
    kwargs.setdefault("expires", _FUTURE)
    return Cookie(name=name, value=value, **kwargs)


# ---------------------------------------------------------------------------
# extract_domain
# ---------------------------------------------------------------------------


class TestExtractDomain:
    def test_simple_url(self):
        assert extract_domain("https://example.com/path") == "example.com"

    def test_port(self):
        assert extract_domain("https://example.com:8443/x") == "example.com"

    def test_invalid_url(self):
        assert extract_domain("not-a-url") is None


# ---------------------------------------------------------------------------
# Set-Cookie parsing
# ---------------------------------------------------------------------------


class TestParseSetCookie:
    def test_attributes(self):
        c = parse_set_cookie(
            "cf_clearance=abc; Domain=.example.com; Path=/; Secure; HttpOnly"
        )
        assert c.name == "cf_clearance"
        assert c.value == "abc"
        assert c.domain == ".example.com"
        assert c.secure is True
        assert c.http_only is True
        assert c.expires is None

    def test_value_with_equals(self):
        assert parse_set_cookie("t=a=b; Path=/").value == "a=b"

    def test_malformed(self):
        assert parse_set_cookie("invalid") is None
        assert parse_set_cookie("=value") is None

    def test_parse_many_skips_malformed(self):
        cookies = parse_set_cookies([b"a=1", "bad", "b=2; Path=/x"])
        assert [c.name for c in cookies] == ["a", "b"]
        assert cookies[1].path == "/x"


class TestParseCookieExpires:
    def test_max_age(self):
        before = time.time()
        exp = _parse_cookie_expires({"max-age": "3600"})
        assert before + 3600 <= exp <= time.time() + 3600

    def test_max_age_wins_over_expires(self):
        exp = _parse_cookie_expires({
            "max-age": "60",
            "expires": "Thu, 01 Jan 2099 00:00:00 GMT",
        })
        assert exp < time.time() + 120

    def test_expires_date(self):
        exp = _parse_cookie_expires({"expires": "Thu, 01 Jan 2099 00:00:00 GMT"})
        assert exp == 4070908800.0

    def test_garbage(self):
        assert _parse_cookie_expires({"expires": "soon"}) is None

    def test_session(self):
        assert _parse_cookie_expires({}) is None


# ---------------------------------------------------------------------------
# Set-Cookie rendering
# ---------------------------------------------------------------------------


class TestToSetCookie:
    def test_full_attributes(self):
        c = Cookie(
            name="cf_clearance", value="abc", domain=".example.com",
            path="/app", expires=0, secure=True, http_only=True,
        )
        assert c.to_set_cookie() == (
            "cf_clearance=abc; Domain=.example.com; Path=/app; "
            "Expires=Thu, 01 Jan 1970 00:00:00 GMT; Secure; HttpOnly"
        )

    def test_host_only_has_no_domain(self):
        raw = Cookie(name="sid", value="abc").to_set_cookie()
        assert raw == "sid=abc; Path=/"

    def test_parse_back(self):
        c = _cookie(domain="example.com", secure=True)
        parsed = parse_set_cookie(c.to_set_cookie())
        assert parsed.domain == "example.com"
        assert parsed.secure is True
        assert parsed.expires == pytest.approx(c.expires, abs=1)

    def test_expired(self):
        assert _cookie(expires=time.time() - 1).is_expired()
        assert not _cookie(expires=None).is_expired()


# ---------------------------------------------------------------------------
# CookieJar
# ---------------------------------------------------------------------------


class TestCookieJar:
    def test_host_only_stays_host_only(self):
        jar = CookieJar()
        jar.save("https://example.com/", [parse_set_cookie("sid=abc; Path=/")])
        assert [c.name for c in jar.load("https://example.com/x")] == ["sid"]
        assert jar.load("https://evil.example.com/") == []
        assert jar.load("https://example.com/")[0].domain == ""

    def test_domain_attribute_files_under_domain(self):
        jar = CookieJar()
        jar.save("https://www.example.com/", [_cookie(domain=".example.com")])
        assert jar.list_domains() == ["example.com"]
        assert len(jar.load("https://example.com/")) == 1

    def test_replace_same_key(self):
        jar = CookieJar()
        jar.save("https://example.com/", [_cookie(value="old")])
        jar.save("https://example.com/", [_cookie(value="new")])
        assert len(jar) == 1
        assert jar.load("https://example.com/")[0].value == "new"

    def test_expired_cookie_deletes(self):
        jar = CookieJar()
        jar.save("https://example.com/", [_cookie()])
        jar.save("https://example.com/", [_cookie(expires=time.time() - 10)])
        assert jar.load("https://example.com/") == []

    def test_longer_paths_first(self):
        jar = CookieJar()
        jar.save("https://example.com/", [
            _cookie(name="root", path="/"),
            _cookie(name="deep", path="/a/b"),
        ])
        names = [c.name for c in jar.load("https://example.com/a/b/c")]
        assert names == ["deep", "root"]

    def test_clear_domain(self):
        jar = CookieJar()
        jar.save("https://a.com/", [_cookie()])
        jar.save("https://b.com/", [_cookie()])
        jar.clear("a.com")
        assert jar.load("https://a.com/") == []
        assert len(jar.load("https://b.com/")) == 1


# ---------------------------------------------------------------------------
# ClientCookieStore
# ---------------------------------------------------------------------------


class TestClientCookieStore:
    def test_save_feeds_client_jar(self):
        client = AsyncMockClient([])
        store = ClientCookieStore(client)
        store.save("https://example.com/", [Cookie(name="sid", value="1")])
        assert client.cookie_jar.added == [
            ("sid=1; Path=/", "https://example.com/")
        ]
        assert store.load("https://example.com/") == []

    def test_writes_through_to_backing(self):
        client = AsyncMockClient([])
        backing = CookieJar()
        store = ClientCookieStore(client, backing)
        store.save("https://example.com/", [_cookie()])
        assert len(client.cookie_jar.added) == 1
        assert [c.name for c in store.load("https://example.com/")] == [
            "cf_clearance"
        ]

    def test_client_jar_failure_still_writes_through(self):
        client = AsyncMockClient([])
        client.cookie_jar.add = MagicMock(side_effect=ValueError("bad"))
        backing = CookieJar()
        ClientCookieStore(client, backing).save(
            "https://example.com/", [_cookie()]
        )
        assert len(backing) == 1


# ---------------------------------------------------------------------------
# FileCookieJar
# ---------------------------------------------------------------------------


class TestFileCookieJar:
    def test_persists_and_hydrates(self, tmp_path):
        jar = FileCookieJar(str(tmp_path))
        jar.save("https://example.com/", [_cookie()])
        assert (tmp_path / "example.com.json").exists()

        fresh = FileCookieJar(str(tmp_path))
        loaded = fresh.load("https://example.com/")
        assert [c.value for c in loaded] == ["abc"]

    def test_session_cookies_not_written(self, tmp_path):
        jar = FileCookieJar(str(tmp_path))
        jar.save("https://example.com/", [_cookie(expires=None)])
        assert not (tmp_path / "example.com.json").exists()
        assert len(jar.load("https://example.com/")) == 1

    def test_merge_keeps_other_cookies(self, tmp_path):
        jar = FileCookieJar(str(tmp_path))
        jar.save("https://example.com/", [_cookie(name="a")])
        jar.save("https://example.com/", [_cookie(name="b")])
        data = json.loads((tmp_path / "example.com.json").read_text())
        assert sorted(e["name"] for e in data) == ["a", "b"]

    def test_lru_eviction(self, tmp_path):
        jar = FileCookieJar(str(tmp_path), max_entries=2)
        for name in ("a", "b", "c"):
            jar.save("https://example.com/", [_cookie(name=name)])
        data = json.loads((tmp_path / "example.com.json").read_text())
        assert sorted(e["name"] for e in data) == ["b", "c"]

    def test_corrupt_file_ignored(self, tmp_path):
        (tmp_path / "example.com.json").write_text("{not json")
        jar = FileCookieJar(str(tmp_path))
        assert jar.load("https://example.com/") == []

    def test_clear(self, tmp_path):
        jar = FileCookieJar(str(tmp_path))
        jar.save("https://example.com/", [_cookie()])
        jar.clear("example.com")
        assert jar.list_domains() == []
        assert jar.load("https://example.com/") == []

    def test_list_domains(self, tmp_path):
        jar = FileCookieJar(str(tmp_path))
        jar.save("https://a.com/", [_cookie()])
        jar.save("https://b.com/", [_cookie()])
        assert sorted(jar.list_domains()) == ["a.com", "b.com"]

    def test_host_only_survives_reload(self, tmp_path):
        jar = FileCookieJar(str(tmp_path))
        jar.save("https://example.com/", [_cookie(name="sid")])
        data = json.loads((tmp_path / "example.com.json").read_text())
        assert data[0]["domain"] == ""

        fresh = FileCookieJar(str(tmp_path))
        assert fresh.load("https://example.com/")[0].domain == ""
        assert fresh.load("https://sub.example.com/") == []
