"""Shared mock objects, fake engines and session factories for clearance tests."""

import asyncio
import threading
from unittest.mock import patch

from clearance._cookies import Cookie
from clearance.browser._engine import EngineCookie

CHALLENGE_HTML = (
    "<html><head><title>Just a moment...</title></head>"
    "<body>Checking your browser</body></html>"
)
CLEAN_HTML = (
    "<html><head><title>Example Domain</title></head>"
    "<body>hello</body></html>"
)

# Far-future expiry in milliseconds
FUTURE_MS = 4102444800000


def clearance_cookie(value="token", domain="example.com"):
    return EngineCookie(
        name="cf_clearance",
        value=value,
        domain=domain,
        path="/",
        expires_ms=FUTURE_MS,
        secure=True,
        http_only=True,
    )


# ---------------------------------------------------------------------------
# Mock rnet types
# ---------------------------------------------------------------------------


class MockStatus:
    def __init__(self, code: int):
        self._code = code

    def as_int(self) -> int:
        return self._code


class MockHeaderMap:
    """Mock rnet HeaderMap with bytes keys and bytes values.

    Mirrors rnet's real HeaderMap behavior:
    - keys() returns unique bytes keys
    - get() returns first value only
    - get_all() returns list of all values for a key
    """

    def __init__(self, data=None):
        self._raw: dict[bytes, list[bytes]] = {}
        items = data.items() if isinstance(data, dict) else (data or [])
        for k, v in items:
            bk = k.lower().encode("ascii")
            self._raw.setdefault(bk, []).append(v.encode("utf-8"))

    def keys(self):
        return list(self._raw.keys())

    def get(self, key):
        if isinstance(key, str):
            key = key.lower().encode("ascii")
        vals = self._raw.get(key)
        return vals[0] if vals else None

    def get_all(self, key):
        if isinstance(key, str):
            key = key.lower().encode("ascii")
        return list(self._raw.get(key, []))


class AsyncMockResponse:
    """Mock rnet async response.

    ``headers`` may be a dict or a list of (name, value) pairs when a
    header repeats (Set-Cookie).
    """

    def __init__(self, status_code: int, headers=None, body: str = ""):
        self.status = MockStatus(status_code)
        self.headers = MockHeaderMap(headers)
        self._body = body

    async def text(self):
        return self._body

    async def bytes(self):
        return self._body.encode("utf-8")

    async def stream(self):
        data = self._body.encode("utf-8")
        for i in range(0, len(data), 8):
            yield data[i:i + 8]


class MockJar:
    """Mock cookie jar that records add() calls."""

    def __init__(self):
        self.added = []

    def add(self, cookie_str, url):
        self.added.append((cookie_str, url))


class AsyncMockClient:
    """Async mock rnet client that returns responses from a sequence."""

    def __init__(self, responses: list, cookie_jar: MockJar | None = None):
        self._responses = responses
        self._index = 0
        self.request_count = 0
        self.last_kwargs: dict = {}
        self.request_log: list[tuple] = []
        self.cookie_jar = cookie_jar or MockJar()
        self.init_kwargs: dict = {}

    async def request(self, method, url, **kwargs):
        self.last_kwargs = kwargs
        resp = self._responses[
            min(self._index, len(self._responses) - 1)
        ]
        self._index += 1
        self.request_count += 1
        self.request_log.append((method, url, kwargs))
        if isinstance(resp, Exception):
            raise resp
        return resp


def make_session(responses, **session_kwargs):
    """Create an AsyncSession whose rnet client is an AsyncMockClient."""
    from clearance._session import AsyncSession

    mock = AsyncMockClient(responses)
    with patch("clearance._session.Client", return_value=mock) as client_cls:
        session = AsyncSession(**session_kwargs)
    mock.init_kwargs = client_cls.call_args.kwargs
    return session, mock


# ---------------------------------------------------------------------------
# Fake rendering engine
# ---------------------------------------------------------------------------


class FakeSurface:
    def __init__(self):
        self.close_count = 0

    async def close(self):
        self.close_count += 1


class FakeHandle:
    """Engine handle whose page content the test controls.

    ``run()`` fires ``loads_on_run`` load events with the engine's
    current HTML. Later loads are fired by the test via ``fire_load``.
    """

    def __init__(self, engine, settings, navigation, on_load):
        self.engine = engine
        self.settings = settings
        self.navigation = navigation
        self.on_load = on_load
        self.html = engine.html
        self.cookies = list(engine.cookies)
        self.surfaces: list[FakeSurface] = []
        self.promotions: list = []
        self.dispose_count = 0
        self.cookie_urls: list[str] = []

    async def run(self):
        if self.engine.run_error is not None:
            raise self.engine.run_error
        self.engine.started.set()
        for _ in range(self.engine.loads_on_run):
            await self.fire_load()

    async def fire_load(self, url=None):
        await self.on_load(url or self.navigation.url)

    async def promote_to_interactive(self, display):
        if self.engine.promote_error is not None:
            raise self.engine.promote_error
        self.promotions.append(display)
        surface = FakeSurface()
        self.surfaces.append(surface)
        self.engine.promoted.set()
        return surface

    async def get_html(self):
        return self.html

    async def get_cookies(self, url):
        self.cookie_urls.append(url)
        return list(self.cookies)

    async def dispose(self):
        self.dispose_count += 1


class FakeEngine:
    def __init__(
        self,
        html=CLEAN_HTML,
        cookies=None,
        loads_on_run=1,
        run_error=None,
        promote_error=None,
    ):
        self.html = html
        self.cookies = cookies if cookies is not None else [clearance_cookie()]
        self.loads_on_run = loads_on_run
        self.run_error = run_error
        self.promote_error = promote_error
        self.handles: list[FakeHandle] = []
        self.started = asyncio.Event()
        self.promoted = asyncio.Event()

    def create_headless(self, settings, navigation, on_load):
        handle = FakeHandle(self, settings, navigation, on_load)
        self.handles.append(handle)
        return handle

    @property
    def handle(self) -> FakeHandle:
        return self.handles[-1]


class RecordingStore:
    """Cookie store that records every save() call."""

    def __init__(self, error=None):
        self.saves: list[tuple[str, list[Cookie]]] = []
        self.threads: list[int] = []
        self.error = error

    def save(self, url, cookies):
        if self.error is not None:
            raise self.error
        self.threads.append(threading.get_ident())
        self.saves.append((url, list(cookies)))

    def load(self, url):
        return [c for _, saved in self.saves for c in saved]
