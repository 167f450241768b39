"""clearance -- HTTP client that solves bot challenges in a real browser."""

import logging
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("clearance-py")
except PackageNotFoundError:
    __version__ = "0.0.0"

from clearance._challenge import is_challenge, is_challenge_html, page_title
from clearance._cookies import (
    ClientCookieStore,
    Cookie,
    CookieJar,
    CookieStore,
    FileCookieJar,
)
from clearance._display import (
    DisplayContext,
    DisplayProvider,
    default_display_provider,
    no_display,
)
from clearance._errors import (
    BadResponse,
    ChallengeFailed,
    ClearanceError,
    ConnectionFailed,
    DetectionDecodeFailure,
    EngineStartFailure,
    NoDisplayContext,
    ResolutionError,
    TooManyRedirects,
    TransportError,
)
from clearance._interceptor import (
    CallbackInterceptor,
    ChallengeInterceptor,
    Interceptor,
)
from clearance._request import FormData, Request
from clearance._resolver import (
    DEFAULT_AUTO_TIMEOUT,
    ChallengeResolver,
    HarvestedResult,
    ResolverState,
)
from clearance._response import Response, ResponseType, StreamBody
from clearance._session import DEFAULT_HEADERS, AsyncSession

__all__ = [
    "__version__",
    "AsyncSession",
    "Request",
    "Response",
    "ResponseType",
    "StreamBody",
    "FormData",
    "Interceptor",
    "CallbackInterceptor",
    "ChallengeInterceptor",
    "ChallengeResolver",
    "ResolverState",
    "HarvestedResult",
    "Cookie",
    "CookieJar",
    "CookieStore",
    "ClientCookieStore",
    "FileCookieJar",
    "DisplayContext",
    "DisplayProvider",
    "default_display_provider",
    "no_display",
    "is_challenge",
    "is_challenge_html",
    "page_title",
    "ClearanceError",
    "TransportError",
    "ConnectionFailed",
    "BadResponse",
    "TooManyRedirects",
    "ChallengeFailed",
    "ResolutionError",
    "NoDisplayContext",
    "EngineStartFailure",
    "DetectionDecodeFailure",
    "DEFAULT_AUTO_TIMEOUT",
    "DEFAULT_HEADERS",
    "get",
    "post",
]

# Silent by default; callers opt in via logging.getLogger("clearance").setLevel(...)
logging.getLogger("clearance").addHandler(logging.NullHandler())


async def get(url: str, **kwargs) -> Response:
    """Module-level convenience: one-shot GET that solves challenges."""
    async with AsyncSession(solve_challenges=True) as s:
        return await s.get(url, **kwargs)


async def post(url: str, **kwargs) -> Response:
    """Module-level convenience: one-shot POST that solves challenges."""
    async with AsyncSession(solve_challenges=True) as s:
        return await s.post(url, **kwargs)
