"""Interceptors: hooks the session runs on every response and error.

``on_response`` returns the response to pass it on (or a different
one to replace it) and raises to reject the exchange. ``on_error``
returns a response to resolve the failure and raises to pass the
error (or a new one) on.
"""

import logging
from collections.abc import Awaitable, Callable

from clearance._challenge import is_challenge
from clearance._cookies import CookieStore
from clearance._display import DisplayProvider
from clearance._errors import ChallengeFailed, TransportError
from clearance._request import Request
from clearance._resolver import (
    DEFAULT_AUTO_TIMEOUT,
    ChallengeResolver,
    HarvestedResult,
    ResolverState,
)
from clearance._response import Response, ResponseType, StreamBody
from clearance.browser._engine import Engine

logger = logging.getLogger("clearance")


class Interceptor:
    """Pass-through interceptor; subclass and override the hooks."""

    key: str | None = None

    async def on_response(self, response: Response) -> Response:
        return response

    async def on_error(self, error: TransportError) -> Response:
        raise error


class CallbackInterceptor(Interceptor):
    """Interceptor built from two coroutine functions and a removal key."""

    def __init__(
        self,
        key: str,
        on_response: Callable[[Response], Awaitable[Response]],
        on_error: Callable[[TransportError], Awaitable[Response]],
    ):
        self.key = key
        self._on_response = on_response
        self._on_error = on_error

    async def on_response(self, response: Response) -> Response:
        return await self._on_response(response)

    async def on_error(self, error: TransportError) -> Response:
        return await self._on_error(error)


def synthesize_response(
    request: Request, result: HarvestedResult
) -> Response:
    """Build the 200 response that stands in for a solved challenge.

    The body honours the request's response type; JSON requests get
    the HTML as text since a page cannot be parsed as JSON.
    """
    if request.response_type is ResponseType.BYTES:
        data = result.html.encode("utf-8")
    elif request.response_type is ResponseType.STREAM:
        data = StreamBody.from_bytes(result.html.encode("utf-8"))
    else:
        data = result.html
    return Response(
        status_code=200,
        headers={"content-type": "text/html; charset=utf-8"},
        url=result.url or request.url,
        data=data,
        request=request,
        extra={"cloudflare": True},
    )


class ChallengeInterceptor(Interceptor):
    """Detects challenge pages and replaces them with the solved page.

    Harvested cookies are saved to ``cookie_store`` before the
    synthesized response is returned, so the next request already
    carries the new session.
    """

    key = "cloudflare"

    def __init__(
        self,
        cookie_store: CookieStore,
        engine: Engine | None = None,
        display: DisplayProvider | None = None,
        auto_timeout: float = DEFAULT_AUTO_TIMEOUT,
        on_state_change: Callable[[ResolverState], None] | None = None,
        resolver: ChallengeResolver | None = None,
    ):
        self._resolver = resolver or ChallengeResolver(
            cookie_store,
            engine=engine,
            display=display,
            auto_timeout=auto_timeout,
            on_state_change=on_state_change,
        )

    @property
    def resolver(self) -> ChallengeResolver:
        return self._resolver

    @property
    def is_challenging(self) -> bool:
        """True while a challenge is being solved."""
        return self._resolver.is_active

    @property
    def needs_user_input(self) -> bool:
        """True while the interactive browser is (or is about to be) shown."""
        return self._resolver.needs_user_input

    async def _solve(self, request: Request) -> Response:
        try:
            result = await self._resolver.resolve(request)
        except Exception as e:
            logger.warning("Challenge at %s failed: %s", request.url, e)
            raise ChallengeFailed(request.url, e, request=request) from e
        return synthesize_response(request, result)

    async def on_response(self, response: Response) -> Response:
        if response.request is None or not await is_challenge(response):
            return response
        return await self._solve(response.request)

    async def on_error(self, error: TransportError) -> Response:
        response = error.response
        if response is None or not await is_challenge(response):
            raise error
        request = response.request or error.request
        if request is None:
            # Nothing to rebuild the navigation from
            raise error
        return await self._solve(request)
