"""AsyncSession -- asyncio HTTP client over rnet with an interceptor pipeline."""

import asyncio
import datetime
import json
import logging
import time
from urllib.parse import urlencode, urljoin, urlparse

from rnet import Client, Emulation, Method

from clearance._cookies import (
    ClientCookieStore,
    Cookie,
    CookieJar,
    CookieStore,
    parse_set_cookies,
)
from clearance._display import DisplayProvider
from clearance._errors import (
    BadResponse,
    ClearanceError,
    ConnectionFailed,
    TooManyRedirects,
    TransportError,
)
from clearance._interceptor import ChallengeInterceptor, Interceptor
from clearance._request import FormData, Request, encode_body, is_json_mime_type
from clearance._resolver import DEFAULT_AUTO_TIMEOUT
from clearance._response import Response, ResponseType, StreamBody
from clearance.browser._engine import Engine

logger = logging.getLogger("clearance")

_METHOD_MAP: dict[str, Method] = {
    "GET": Method.GET,
    "POST": Method.POST,
    "PUT": Method.PUT,
    "DELETE": Method.DELETE,
    "HEAD": Method.HEAD,
    "OPTIONS": Method.OPTIONS,
    "PATCH": Method.PATCH,
    "TRACE": Method.TRACE,
}


def _to_method(method: str) -> Method:
    """Convert a string HTTP method to rnet Method enum."""
    try:
        return _METHOD_MAP[method.upper()]
    except KeyError:
        raise ValueError(f"Unknown HTTP method: {method}") from None


DEFAULT_EMULATION = Emulation.Chrome131

DEFAULT_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8,"
        "application/signed-exchange;v=b3;q=0.7"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br, zstd",
    "Upgrade-Insecure-Requests": "1",
}

DEFAULT_CONNECT_TIMEOUT = datetime.timedelta(seconds=10)
DEFAULT_TIMEOUT = datetime.timedelta(seconds=30)


def _normalize_timeout(val) -> datetime.timedelta:
    if isinstance(val, datetime.timedelta):
        return val
    return datetime.timedelta(seconds=float(val))


def _decode_headers(header_map) -> dict[str, str]:
    """Decode rnet HeaderMap to lowercase string dict.

    rnet's HeaderMap: keys() returns unique bytes keys (deduped),
    get()/[] returns only the first value, get_all() returns all
    values for a key. We use get_all() so multi-value headers
    (especially Set-Cookie) are fully captured, joined with "; ".
    """
    result: dict[str, str] = {}
    for raw_key in header_map.keys():
        k = raw_key.decode("ascii", errors="replace").lower()
        all_vals = header_map.get_all(k)
        parts = [v.decode("utf-8", errors="replace") for v in all_vals]
        result[k] = "; ".join(parts)
    return result


def _extract_location(header_map) -> str:
    """Extract Location header from raw HeaderMap without full decode."""
    raw = header_map.get("location")
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


async def _iter_stream(resp):
    async for chunk in resp.stream():
        yield chunk


class AsyncSession:
    """Asynchronous HTTP session with optional challenge solving.

    Every response passes through the interceptor chain. With
    ``solve_challenges=True`` a ChallengeInterceptor is installed, so
    challenge pages are solved in a browser. The cookies it earns go
    into the rnet client's jar, which replays them on later requests,
    and are written through to ``cookie_jar``.

    ``cookie_jar`` is the persistent side: its cookies are loaded into
    the client's jar on construction, and Set-Cookie values from every
    response are saved to it.
    """

    def __init__(
        self,
        emulation: Emulation | None = None,
        headers: dict[str, str] | None = None,
        connect_timeout: datetime.timedelta | float | int | None = None,
        timeout: datetime.timedelta | float | int | None = None,
        follow_redirects: bool = True,
        max_redirects: int = 10,
        proxy: str | None = None,
        cookie_jar: CookieStore | None = None,
        interceptors: list[Interceptor] | None = None,
        solve_challenges: bool = False,
        engine: Engine | None = None,
        display: DisplayProvider | None = None,
        auto_timeout: float = DEFAULT_AUTO_TIMEOUT,
    ):
        self.emulation = emulation or DEFAULT_EMULATION
        self.headers = dict(headers) if headers is not None else dict(DEFAULT_HEADERS)
        self.connect_timeout = (
            _normalize_timeout(connect_timeout)
            if connect_timeout is not None
            else DEFAULT_CONNECT_TIMEOUT
        )
        self.timeout = (
            _normalize_timeout(timeout)
            if timeout is not None
            else DEFAULT_TIMEOUT
        )
        self.follow_redirects = follow_redirects
        self.max_redirects = max_redirects
        self.cookie_jar = cookie_jar if cookie_jar is not None else CookieJar()
        self._interceptors: list[Interceptor] = list(interceptors or [])
        self._closed = False

        self._proxy = None
        if proxy:
            from rnet import Proxy

            self._proxy = Proxy.all(proxy)

        self._client = Client(**self._build_client_kwargs())
        self._cookie_store = ClientCookieStore(self._client, self.cookie_jar)
        self._hydrate_jar_from_store()

        if solve_challenges:
            self.add_interceptor(
                ChallengeInterceptor(
                    self._cookie_store,
                    engine=engine,
                    display=display,
                    auto_timeout=auto_timeout,
                )
            )

        logger.debug(
            "Session created with emulation=%s, timeout=%s, "
            "solve_challenges=%s",
            self.emulation,
            self.timeout,
            solve_challenges,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Drop the interceptors and refuse further requests. Idempotent.

        Browsers are disposed per resolution, so there is nothing else to
        release here.
        """
        if self._closed:
            return
        self._closed = True
        self._interceptors.clear()
        logger.debug("Session closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    def _build_client_kwargs(self) -> dict:
        """Build kwargs for rnet Client construction."""
        kwargs = {
            "emulation": self.emulation,
            "headers": dict(self.headers),
            "connect_timeout": self.connect_timeout,
            "timeout": self.timeout,
            "cookie_store": True,
        }
        if self._proxy is not None:
            kwargs["proxies"] = [self._proxy]
        return kwargs

    def _hydrate_jar_from_store(self) -> None:
        """Load stored cookies into the client's jar."""
        if not isinstance(self.cookie_jar, CookieJar):
            return
        for domain in self.cookie_jar.list_domains():
            url = f"https://{domain}/"
            self._cookie_store.add_to_client(url, self.cookie_jar.load(url))

    async def add_cookie(self, cookie: Cookie, url: str) -> None:
        """Add a cookie to the client's jar and the cookie store."""
        await asyncio.to_thread(self._cookie_store.save, url, [cookie])

    # ------------------------------------------------------------------
    # Interceptors
    # ------------------------------------------------------------------

    @property
    def interceptors(self) -> list[Interceptor]:
        return list(self._interceptors)

    def add_interceptor(self, interceptor: Interceptor) -> None:
        self._interceptors.append(interceptor)

    def remove_interceptor(self, key: str) -> int:
        """Remove interceptors registered under ``key``. Returns the count."""
        before = len(self._interceptors)
        self._interceptors = [
            i for i in self._interceptors if i.key != key
        ]
        return before - len(self._interceptors)

    async def _run_response_chain(self, response: Response) -> Response:
        for interceptor in list(self._interceptors):
            response = await interceptor.on_response(response)
        return response

    async def _run_error_chain(self, error: TransportError) -> Response:
        for interceptor in list(self._interceptors):
            try:
                return await interceptor.on_error(error)
            except TransportError as e:
                error = e
        raise error

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_params(url: str, params: dict[str, str] | None) -> str:
        """Append query parameters to a URL.

        rnet doesn't support a params= kwarg, so the query string is
        built into the URL before passing to rnet.
        """
        if not params:
            return url
        sep = "&" if "?" in url else "?"
        return url + sep + urlencode(params, doseq=True)

    @staticmethod
    def _resolve_redirect_url(base_url: str, location: str) -> str:
        """Resolve a Location header value to an absolute URL."""
        location = location.strip()
        if location.startswith("//"):
            scheme = urlparse(base_url).scheme or "https"
            location = f"{scheme}:{location}"
        resolved = urljoin(base_url, location)
        parsed = urlparse(resolved)
        if not parsed.path:
            resolved = parsed._replace(path="/").geturl()
        return resolved

    def _build_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None,
        params: dict[str, str] | None,
        data,
        json_data,
        content_type: str | None,
        response_type: ResponseType | str,
    ) -> Request:
        if json_data is not None:
            data = json_data
            content_type = content_type or "application/json"
        elif content_type is None:
            if isinstance(data, FormData):
                content_type = data.content_type
            elif isinstance(data, dict):
                content_type = "application/x-www-form-urlencoded"
        merged = dict(self.headers)
        if headers:
            merged.update(headers)
        return Request(
            method=method.upper(),
            url=self._apply_params(url, params),
            headers=merged,
            data=data,
            content_type=content_type,
            response_type=ResponseType(response_type),
        )

    def _wire_headers(
        self, request: Request, with_body: bool
    ) -> dict[str, str]:
        """Per-request headers as a delta over client-level headers.

        rnet merges per-request headers on top of the client's; sending
        a header at both levels duplicates it on the wire. Cookies come
        from rnet's jar.
        """
        delta = {
            k: v for k, v in request.headers.items()
            if v != "" and self.headers.get(k) != v
        }
        if with_body and request.content_type and request.header(
            "content-type"
        ) is None:
            delta["Content-Type"] = request.content_type
        return delta

    async def _cache_response_cookies(self, url: str, header_map) -> None:
        """Write-through: save Set-Cookie values to the cookie store.

        rnet's jar has already taken them for replay.
        """
        try:
            cookies = parse_set_cookies(header_map.get_all("set-cookie"))
            if cookies:
                await asyncio.to_thread(self.cookie_jar.save, url, cookies)
        except Exception:
            logger.debug(
                "Failed to cache cookies for %s", url, exc_info=True
            )

    async def _read_body(self, resp, response_type: ResponseType, headers):
        if response_type is ResponseType.BYTES:
            return await resp.bytes()
        if response_type is ResponseType.STREAM:
            return StreamBody(_iter_stream(resp))
        text = await resp.text()
        if (
            response_type is ResponseType.JSON
            and text
            and is_json_mime_type(headers.get("content-type"))
        ):
            return json.loads(text)
        return text

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def _send(self, request: Request, timeout) -> Response:
        """Send ``request``, following redirects. No interceptors."""
        current_url = request.url
        method = request.method
        body = encode_body(request)
        redirects_followed = 0

        while True:
            kwargs = {
                "headers": self._wire_headers(request, body is not None),
            }
            if body is not None:
                kwargs["body"] = body
            if timeout is not None:
                kwargs["timeout"] = _normalize_timeout(timeout)

            rnet_method = _to_method(method)
            logger.debug("%s %s", method, current_url)
            try:
                resp = await self._client.request(
                    rnet_method, current_url, **kwargs
                )
            except Exception as e:
                raise ConnectionFailed(
                    current_url, str(e), request=request
                ) from e

            status = resp.status.as_int()
            await self._cache_response_cookies(current_url, resp.headers)

            if (
                self.follow_redirects
                and 300 <= status < 400
                and status != 304
            ):
                location = _extract_location(resp.headers)
                if location:
                    if redirects_followed >= self.max_redirects:
                        raise TooManyRedirects(
                            current_url, self.max_redirects, request=request
                        )
                    new_url = self._resolve_redirect_url(
                        current_url, location
                    )
                    redirects_followed += 1
                    logger.debug(
                        "%d redirect %d/%d: %s -> %s",
                        status,
                        redirects_followed,
                        self.max_redirects,
                        current_url,
                        new_url,
                    )
                    # POST redirects (301, 302, 303) -> GET per RFC
                    if status in (301, 302, 303) and method != "GET":
                        method = "GET"
                        body = None
                    current_url = new_url
                    continue

            headers = _decode_headers(resp.headers)
            try:
                data = await self._read_body(
                    resp, request.response_type, headers
                )
            except Exception as e:
                raise ConnectionFailed(
                    current_url, f"body decode: {e}", request=request
                ) from e
            return Response(
                status_code=status,
                headers=headers,
                url=current_url,
                data=data,
                request=request,
                raw=resp,
            )

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        data=None,
        json=None,
        content_type: str | None = None,
        response_type: ResponseType | str = ResponseType.TEXT,
        timeout: datetime.timedelta | float | None = None,
    ) -> Response:
        """Send an HTTP request through the interceptor chain.

        2xx responses go through ``on_response``; anything else, and
        connection failures, go through ``on_error``. Raises the
        TransportError left over when no interceptor resolves it.
        """
        if self._closed:
            raise ClearanceError("Session is closed")
        start_time = time.monotonic()
        request = self._build_request(
            method, url, headers, params, data, json, content_type,
            response_type,
        )
        try:
            response = await self._send(request, timeout)
        except TransportError as e:
            return await self._run_error_chain(e)

        response.elapsed = time.monotonic() - start_time
        if response.ok:
            return await self._run_response_chain(response)
        return await self._run_error_chain(BadResponse(request, response))

    async def get(self, url: str, **kwargs) -> Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs) -> Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> Response:
        return await self.request("DELETE", url, **kwargs)

    async def head(self, url: str, **kwargs) -> Response:
        return await self.request("HEAD", url, **kwargs)

    async def options(self, url: str, **kwargs) -> Response:
        return await self.request("OPTIONS", url, **kwargs)

    async def patch(self, url: str, **kwargs) -> Response:
        return await self.request("PATCH", url, **kwargs)
