"""BrowserSession -- lifecycle of one engine instance for one navigation."""

import logging
from collections.abc import Awaitable, Callable

from clearance._display import DisplayContext
from clearance._errors import EngineStartFailure
from clearance.browser._engine import (
    Engine,
    EngineCookie,
    EngineHandle,
    EngineSettings,
    NavigationRequest,
    Surface,
)

logger = logging.getLogger("clearance")

PageSettledCallback = Callable[
    [str, list[EngineCookie], str], "Awaitable[None] | None"
]


class BrowserSession:
    """Wraps a single engine instance navigating to one request.

    Starts headless; can be promoted once to a visible surface without
    re-wiring the page-settled callback. ``dispose()`` is safe to call
    any number of times.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._handle: EngineHandle | None = None
        self._surface: Surface | None = None
        self._on_page_settled: PageSettledCallback | None = None
        self._promoted = False
        self._disposed = False
        self._url = ""

    @property
    def promoted(self) -> bool:
        return self._promoted

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def start(
        self,
        settings: EngineSettings,
        navigation: NavigationRequest,
        on_page_settled: PageSettledCallback,
    ) -> None:
        """Launch a headless engine and begin loading ``navigation``.

        ``on_page_settled(html, cookies, url)`` fires after every
        finished load, possibly many times per session.
        """
        if self._handle is not None:
            raise RuntimeError("BrowserSession already started")
        self._url = navigation.url
        self._on_page_settled = on_page_settled
        try:
            self._handle = self._engine.create_headless(
                settings, navigation, self._handle_load
            )
            await self._handle.run()
        except Exception as e:
            logger.warning(
                "Browser engine failed to start for %s",
                navigation.url,
                exc_info=True,
            )
            await self.dispose()
            raise EngineStartFailure(navigation.url, str(e)) from e
        logger.debug("Browser session started for %s", navigation.url)

    async def _handle_load(self, url: str) -> None:
        if self._disposed or self._handle is None:
            return
        try:
            html = await self._handle.get_html()
            if html is None:
                logger.debug("Load finished at %s without HTML", url)
                return
            cookies = await self._handle.get_cookies(url)
            if self._disposed:
                return
            result = self._on_page_settled(html, cookies, url)
            if result is not None:
                await result
        except Exception:
            logger.warning(
                "Page-settled handling failed at %s", url, exc_info=True
            )

    async def promote_to_interactive(self, display: DisplayContext) -> Surface:
        """Attach the running engine to a visible surface."""
        if self._promoted:
            raise RuntimeError("BrowserSession already promoted")
        if self._handle is None or self._disposed:
            raise RuntimeError("BrowserSession is not running")
        self._promoted = True
        try:
            self._surface = await self._handle.promote_to_interactive(display)
        except Exception as e:
            raise EngineStartFailure(self._url, str(e)) from e
        logger.info("Browser session promoted to interactive for %s", self._url)
        return self._surface

    async def close_surface(self) -> None:
        """Close the visible surface, once."""
        surface, self._surface = self._surface, None
        if surface is None:
            return
        try:
            await surface.close()
        except Exception:
            logger.debug("Surface close failed", exc_info=True)

    async def dispose(self) -> None:
        """Release the surface and the engine instance."""
        if self._disposed:
            return
        self._disposed = True
        await self.close_surface()
        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                await handle.dispose()
            except Exception:
                logger.debug("Engine dispose failed", exc_info=True)
        logger.debug("Browser session disposed for %s", self._url)
