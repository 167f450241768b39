"""Browser engine layer: engine interface, BrowserSession, patchright engine."""

from clearance.browser._engine import (
    Engine,
    EngineCookie,
    EngineHandle,
    EngineSettings,
    LoadCallback,
    NavigationRequest,
    Surface,
)
from clearance.browser._patchright import (
    PatchrightEngine,
    PatchrightHandle,
    PatchrightSurface,
    engine_cookie_from_playwright,
)
from clearance.browser._session import BrowserSession

__all__ = [
    "BrowserSession",
    "Engine",
    "EngineCookie",
    "EngineHandle",
    "EngineSettings",
    "LoadCallback",
    "NavigationRequest",
    "PatchrightEngine",
    "PatchrightHandle",
    "PatchrightSurface",
    "Surface",
    "engine_cookie_from_playwright",
]
