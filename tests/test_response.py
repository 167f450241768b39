"""Tests for Response and StreamBody."""

import pytest

from clearance._response import Response, StreamBody


async def _chunks(*parts):
    for p in parts:
        yield p


def _resp(data, **kwargs):
    kwargs.setdefault("status_code", 200)
    return Response(data=data, **kwargs)


class TestResponse:
    def test_text_from_str(self):
        assert _resp("hello").text == "hello"

    def test_content_from_str(self):
        assert _resp("héllo").content == "héllo".encode()

    def test_text_from_bytes_replaces_invalid(self):
        assert _resp(b"ok\xff").text == "ok�"

    def test_json_from_text(self):
        assert _resp('{"a": 1}').json() == {"a": 1}

    def test_json_already_parsed(self):
        assert _resp({"a": 1}).json() == {"a": 1}

    def test_content_of_parsed_json(self):
        assert _resp([1, 2]).content == b"[1, 2]"

    def test_none_body(self):
        assert _resp(None).content == b""

    def test_ok(self):
        assert _resp("", status_code=204).ok
        assert not _resp("", status_code=403).ok

    def test_is_challenge_solved(self):
        assert _resp("", extra={"cloudflare": True}).is_challenge_solved
        assert not _resp("").is_challenge_solved

    def test_content_type(self):
        resp = _resp("", headers={"content-type": "text/html"})
        assert resp.content_type == "text/html"

    def test_get_all_without_raw(self):
        resp = _resp("", headers={"x-a": "1"})
        assert resp.get_all("x-a") == ["1"]
        assert resp.get_all("x-b") == []

    def test_repr(self):
        assert repr(_resp("", status_code=503)) == "<Response [503]>"

    def test_unread_stream_content_raises(self):
        resp = _resp(StreamBody(_chunks(b"a")))
        with pytest.raises(ValueError):
            resp.content

    @pytest.mark.asyncio
    async def test_read_drains_stream(self):
        resp = _resp(StreamBody(_chunks(b"ab", b"cd")))
        assert await resp.read() == b"abcd"
        assert resp.text == "abcd"


class TestStreamBody:
    @pytest.mark.asyncio
    async def test_iterate_then_replay(self):
        body = StreamBody(_chunks(b"a", b"b"))
        first = [c async for c in body]
        assert first == [b"a", b"b"]
        assert body.exhausted
        assert [c async for c in body] == [b"a", b"b"]

    @pytest.mark.asyncio
    async def test_read_twice(self):
        body = StreamBody(_chunks(b"x", b"y"))
        assert await body.read() == b"xy"
        assert await body.read() == b"xy"

    @pytest.mark.asyncio
    async def test_from_bytes(self):
        body = StreamBody.from_bytes(b"payload")
        assert body.exhausted
        assert [c async for c in body] == [b"payload"]
