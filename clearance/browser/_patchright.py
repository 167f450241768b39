"""Patchright (patched Playwright) rendering engine.

Headless instances run in a fresh browser context per navigation. The
first document request is rewritten through ``page.route`` so the
browser replays the original method, headers and body, which
``page.goto`` alone cannot do.

Promotion to a visible window: Playwright cannot move a headless page
into a window, so the handle launches a headed browser on the display,
carries over the storage state (cookies + localStorage), and reloads
the current URL with GET. The challenge page is fetched once more.
"""

import logging

from clearance._display import DisplayContext
from clearance.browser._engine import (
    EngineCookie,
    EngineSettings,
    LoadCallback,
    NavigationRequest,
)

logger = logging.getLogger("clearance")

_LAUNCH_ARGS = ["--disable-blink-features=AutomationControlled"]

# Computed by the browser for the rewritten request
_SKIP_HEADERS = frozenset({"host", "content-length", "connection"})


def _async_playwright():
    try:
        from patchright.async_api import async_playwright
    except ImportError:
        raise ImportError(
            "patchright is required for browser solving. "
            "Install with: pip install clearance-py[browser]"
        ) from None
    return async_playwright()


def engine_cookie_from_playwright(cookie: dict) -> EngineCookie:
    """Convert a Playwright cookie dict to an EngineCookie.

    Playwright reports ``expires`` in seconds with -1 for session
    cookies; EngineCookie carries milliseconds.
    """
    expires = cookie.get("expires", -1)
    expires_ms = None
    if isinstance(expires, (int, float)) and expires > 0:
        expires_ms = int(expires * 1000)
    return EngineCookie(
        name=cookie["name"],
        value=cookie.get("value", ""),
        domain=cookie.get("domain", ""),
        path=cookie.get("path"),
        expires_ms=expires_ms,
        secure=cookie.get("secure"),
        http_only=cookie.get("httpOnly"),
    )


class PatchrightSurface:
    """Visible browser window opened by a promoted handle."""

    def __init__(self, browser):
        self._browser = browser
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._browser.close()
        except Exception:
            logger.debug("Visible browser close failed", exc_info=True)
        logger.debug("Interactive surface closed")


class PatchrightHandle:
    """One patchright browser driving one navigation."""

    def __init__(
        self,
        engine: "PatchrightEngine",
        settings: EngineSettings,
        navigation: NavigationRequest,
        on_load: LoadCallback,
    ):
        self._engine = engine
        self._settings = settings
        self._navigation = navigation
        self._on_load = on_load
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._disposed = False

    @property
    def page(self):
        return self._page

    async def _launch(self, headless: bool, display: DisplayContext | None = None):
        args = list(_LAUNCH_ARGS) + list(self._engine.launch_args)
        kwargs = {"headless": headless, "args": args}
        if self._engine.channel:
            kwargs["channel"] = self._engine.channel
        if display is not None:
            args.append(f"--window-size={display.width},{display.height}")
            env = display.env()
            if env is not None:
                kwargs["env"] = env
        browser = await self._playwright.chromium.launch(**kwargs)
        logger.info("Browser launched (headless=%s)", headless)
        return browser

    async def _new_context(self, browser, storage_state=None):
        kwargs = {}
        if self._settings.user_agent:
            kwargs["user_agent"] = self._settings.user_agent
        if storage_state is not None:
            kwargs["storage_state"] = storage_state
        return await browser.new_context(**kwargs)

    async def _prepare_page(self, context, page, fresh: bool) -> None:
        """Apply cache clearing and background settings over CDP."""
        try:
            cdp = await context.new_cdp_session(page)
        except Exception:
            logger.debug("CDP session unavailable", exc_info=True)
            return
        commands = []
        if fresh and self._settings.clear_cache:
            commands.append(("Network.clearBrowserCache", None))
        if fresh and self._settings.clear_session_cache:
            commands.append(("Network.clearBrowserCookies", None))
        if self._settings.transparent_background:
            commands.append((
                "Emulation.setDefaultBackgroundColorOverride",
                {"color": {"r": 0, "g": 0, "b": 0, "a": 0}},
            ))
        for method, params in commands:
            try:
                await cdp.send(method, params)
            except Exception:
                logger.debug("CDP %s failed", method, exc_info=True)

    async def _install_navigation_route(self, page) -> None:
        """Rewrite the first document request to match the original."""
        nav = self._navigation

        async def _route(route):
            request = route.request
            if not (
                request.is_navigation_request()
                and request.frame == page.main_frame
            ):
                await route.continue_()
                return
            await page.unroute("**/*", _route)
            headers = await request.all_headers()
            for k, v in nav.headers.items():
                if k.lower() not in _SKIP_HEADERS:
                    headers[k.lower()] = v
            await route.continue_(
                method=nav.method,
                headers=headers,
                post_data=nav.body,
            )

        await page.route("**/*", _route)

    async def _handle_page_load(self, page) -> None:
        if self._disposed or page is not self._page:
            return
        logger.debug("Load finished at %s", page.url)
        await self._on_load(page.url)

    async def run(self) -> None:
        """Launch headless and start loading the navigation request."""
        self._playwright = await _async_playwright().start()
        self._browser = await self._launch(headless=True)
        self._context = await self._new_context(self._browser)
        self._page = await self._context.new_page()
        await self._prepare_page(self._context, self._page, fresh=True)
        await self._install_navigation_route(self._page)
        self._page.on("load", self._handle_page_load)
        await self._page.goto(
            self._navigation.url,
            wait_until="commit",
            timeout=self._engine.navigation_timeout * 1000,
        )

    async def promote_to_interactive(
        self, display: DisplayContext
    ) -> PatchrightSurface:
        """Reopen the current page in a visible browser on ``display``."""
        state = await self._context.storage_state()
        current_url = self._page.url or self._navigation.url
        visible = await self._launch(headless=False, display=display)
        try:
            context = await self._new_context(visible, storage_state=state)
            page = await context.new_page()
            await self._prepare_page(context, page, fresh=False)
        except Exception:
            await visible.close()
            raise

        headless = self._browser
        self._browser, self._context, self._page = visible, context, page
        page.on("load", self._handle_page_load)
        try:
            await headless.close()
        except Exception:
            logger.debug("Headless browser close failed", exc_info=True)

        logger.warning(
            "Interactive promotion reloads %s in a visible browser",
            current_url,
        )
        await page.goto(
            current_url,
            wait_until="commit",
            timeout=self._engine.navigation_timeout * 1000,
        )
        return PatchrightSurface(visible)

    async def get_html(self) -> str | None:
        if self._page is None:
            return None
        try:
            return await self._page.content()
        except Exception:
            # Page mid-navigation; the next load event retries
            logger.debug("Page content unavailable", exc_info=True)
            return None

    async def get_cookies(self, url: str) -> list[EngineCookie]:
        if self._context is None:
            return []
        cookies = await self._context.cookies(url)
        return [engine_cookie_from_playwright(c) for c in cookies]

    async def dispose(self) -> None:
        """Shut down browser and playwright."""
        if self._disposed:
            return
        self._disposed = True
        if self._browser:
            try:
                await self._browser.close()
            except Exception:
                pass
            self._browser = None
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception:
                pass
            self._playwright = None
        self._context = None
        self._page = None


class PatchrightEngine:
    """Engine backed by a real Chrome via patchright.

    Uses system Chrome via channel="chrome" for best stealth; pass
    ``channel=None`` to use the bundled Chromium.
    """

    def __init__(
        self,
        channel: str | None = "chrome",
        launch_args: list[str] | None = None,
        navigation_timeout: float = 30.0,
    ):
        self.channel = channel
        self.launch_args = launch_args or []
        self.navigation_timeout = navigation_timeout

    def create_headless(
        self,
        settings: EngineSettings,
        navigation: NavigationRequest,
        on_load: LoadCallback,
    ) -> PatchrightHandle:
        return PatchrightHandle(self, settings, navigation, on_load)
