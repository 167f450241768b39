"""Translate between the HTTP side and the browser side.

Request -> NavigationRequest + EngineSettings, and EngineCookie ->
Cookie for the store.
"""

from clearance._cookies import Cookie
from clearance._request import Request, encode_body
from clearance.browser._engine import (
    EngineCookie,
    EngineSettings,
    NavigationRequest,
)


def navigation_headers(request: Request) -> dict[str, str]:
    """Request headers as strings, plus the declared content type."""
    headers = {k: str(v) for k, v in request.headers.items()}
    if request.content_type is not None:
        for k in [k for k in headers if k.lower() == "content-type"]:
            del headers[k]
        headers["content-type"] = str(request.content_type)
    return headers


def build_navigation_request(request: Request) -> NavigationRequest:
    """Rebuild an HTTP request as a browser document navigation."""
    return NavigationRequest(
        url=request.url,
        main_document_url=request.url,
        method=request.method.upper(),
        headers=navigation_headers(request),
        body=encode_body(request, raw_bytes=False),
    )


def engine_settings_for(request: Request) -> EngineSettings:
    """Engine settings that mirror the original client.

    Cache and session cache are always cleared so the challenge state
    comes from this navigation only.
    """
    return EngineSettings(
        user_agent=request.user_agent,
        clear_cache=True,
        clear_session_cache=True,
        transparent_background=True,
    )


def cookie_from_engine(cookie: EngineCookie) -> Cookie:
    """Convert an engine cookie record to the store representation."""
    return Cookie(
        name=cookie.name,
        value=cookie.value,
        domain=cookie.domain or "",
        path=cookie.path or "/",
        expires=(
            cookie.expires_ms / 1000
            if cookie.expires_ms is not None
            else None
        ),
        secure=bool(cookie.secure) if cookie.secure is not None else False,
        http_only=(
            bool(cookie.http_only) if cookie.http_only is not None else False
        ),
    )
