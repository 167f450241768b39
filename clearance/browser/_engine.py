"""Rendering engine interface.

The resolver never talks to a browser library directly. It drives an
``Engine`` that can create a headless handle for one navigation,
report every finished page load, hand out HTML and cookies, and
attach itself to a visible surface when a human has to step in.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from clearance._display import DisplayContext

# Called with the page URL every time the engine finishes a load.
LoadCallback = Callable[[str], Awaitable[None]]


@dataclass
class EngineSettings:
    """Per-navigation engine settings."""

    user_agent: str | None = None
    clear_cache: bool = True
    clear_session_cache: bool = True
    transparent_background: bool = True


@dataclass
class NavigationRequest:
    """A request the engine loads as a top-level document."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None
    main_document_url: str | None = None


@dataclass
class EngineCookie:
    """A cookie as reported by the engine.

    Unset attributes are None; ``expires_ms`` is a Unix timestamp in
    milliseconds.
    """

    name: str
    value: str
    domain: str = ""
    path: str | None = None
    expires_ms: int | None = None
    secure: bool | None = None
    http_only: bool | None = None


class Surface(Protocol):
    """A visible window showing an engine instance."""

    async def close(self) -> None: ...


class EngineHandle(Protocol):
    """One engine instance driving one navigation."""

    async def run(self) -> None: ...

    async def promote_to_interactive(
        self, display: DisplayContext
    ) -> Surface: ...

    async def get_html(self) -> str | None: ...

    async def get_cookies(self, url: str) -> list[EngineCookie]: ...

    async def dispose(self) -> None: ...


class Engine(Protocol):
    """Factory for engine handles."""

    def create_headless(
        self,
        settings: EngineSettings,
        navigation: NavigationRequest,
        on_load: LoadCallback,
    ) -> EngineHandle: ...
