"""Response -- user-friendly response wrapper."""

import enum
import json
from collections.abc import AsyncIterator
from typing import Any


class ResponseType(enum.Enum):
    """How the session materializes a response body."""

    TEXT = "text"
    BYTES = "bytes"
    STREAM = "stream"
    JSON = "json"


class StreamBody:
    """Async byte stream that remembers what it has yielded.

    Iterating it pulls chunks from the underlying source. ``read()``
    drains the rest and returns the full body; once drained, iterating
    again replays the buffered bytes, so a consumer that inspects the
    body (challenge detection) does not starve the next one.
    """

    def __init__(self, source: AsyncIterator[bytes]):
        self._source = source
        self._chunks: list[bytes] = []
        self._exhausted = False

    @classmethod
    def from_bytes(cls, data: bytes) -> "StreamBody":
        body = cls(_empty())
        body._chunks = [data]
        body._exhausted = True
        return body

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    async def read(self) -> bytes:
        """Drain the stream and return the full body."""
        if not self._exhausted:
            async for chunk in self._source:
                self._chunks.append(bytes(chunk))
            self._exhausted = True
        return b"".join(self._chunks)

    async def __aiter__(self):
        if self._exhausted:
            for chunk in self._chunks:
                yield chunk
            return
        async for chunk in self._source:
            chunk = bytes(chunk)
            self._chunks.append(chunk)
            yield chunk
        self._exhausted = True

    def __repr__(self) -> str:
        state = "drained" if self._exhausted else "open"
        return f"<StreamBody {state}>"


async def _empty():
    return
    yield  # pragma: no cover


class Response:
    """Response object handed to interceptors and callers.

    Provides a requests/httpx-like API:
    - ``status_code``: int
    - ``data``: body as requested (str, bytes, StreamBody, or parsed JSON)
    - ``content``: bytes (materialized bodies only)
    - ``text``: str (materialized bodies only)
    - ``headers``: dict[str, str] (lowercase keys)
    - ``url``: final URL after redirects
    - ``request``: the Request that produced this response
    - ``extra``: free-form markers (``{"cloudflare": True}`` on responses
      synthesized from a solved challenge)
    """

    __slots__ = (
        "status_code",
        "data",
        "headers",
        "url",
        "request",
        "extra",
        "elapsed",
        "_raw",
    )

    def __init__(
        self,
        *,
        status_code: int,
        headers: dict[str, str] | None = None,
        url: str = "",
        data: Any = None,
        request=None,
        extra: dict[str, Any] | None = None,
        elapsed: float = 0.0,
        raw=None,
    ):
        self.status_code = status_code
        self.data = data
        self.headers = headers or {}
        self.url = url
        self.request = request
        self.extra = extra if extra is not None else {}
        self.elapsed = elapsed
        self._raw = raw

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def content(self) -> bytes:
        """Body as bytes. Streamed bodies must be read first."""
        data = self.data
        if data is None:
            return b""
        if isinstance(data, (bytes, bytearray)):
            return bytes(data)
        if isinstance(data, str):
            return data.encode("utf-8")
        if isinstance(data, StreamBody):
            if not data.exhausted:
                raise ValueError(
                    "Streamed body has not been read; await read() first"
                )
            return b"".join(data._chunks)
        return json.dumps(data).encode("utf-8")

    @property
    def text(self) -> str:
        """Body decoded as text.

        Strings are returned as-is. Bytes are decoded as UTF-8 with
        replacement for invalid bytes.
        """
        if isinstance(self.data, str):
            return self.data
        return self.content.decode("utf-8", errors="replace")

    async def read(self) -> bytes:
        """Body as bytes, draining a streamed body if needed."""
        if isinstance(self.data, StreamBody):
            return await self.data.read()
        return self.content

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_challenge_solved(self) -> bool:
        """True if this response was synthesized from a solved challenge."""
        return bool(self.extra.get("cloudflare"))

    def json(self, **kwargs) -> Any:
        if not isinstance(self.data, (str, bytes, bytearray, StreamBody)):
            return self.data
        return json.loads(self.text, **kwargs)

    def get_all(self, key: str) -> list[str]:
        """Return all values for a header key (e.g. individual Set-Cookie entries)."""
        if self._raw is None:
            val = self.headers.get(key, "")
            return [val] if val else []
        return [v.decode() if isinstance(v, bytes) else v
                for v in self._raw.headers.get_all(key)]

    def __repr__(self) -> str:
        return f"<Response [{self.status_code}]>"
