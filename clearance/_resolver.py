"""ChallengeResolver -- drive a browser through one challenge.

State machine per attempt::

    IDLE -> NAVIGATING -> AUTO_SETTLING -> RESOLVED
                               |
                         (auto_timeout)
                               v
                    AWAITING_INTERACTIVE -> INTERACTIVE_SETTLING -> RESOLVED

Any attempt that ends with an exception (no display, engine failure,
cancellation) lands in FAILED.

Every "page settled" event re-checks the page title with the same
predicate used to detect the challenge. The first clean page harvests
cookies into the store and completes the attempt's future; events that
arrive afterwards are ignored. The browser is disposed on every exit
path.
"""

import asyncio
import enum
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from clearance._challenge import is_challenge_html
from clearance._cookies import Cookie, CookieStore
from clearance._display import DisplayProvider, default_display_provider
from clearance._errors import NoDisplayContext
from clearance._navigation import (
    build_navigation_request,
    cookie_from_engine,
    engine_settings_for,
)
from clearance._request import Request
from clearance.browser._engine import Engine, EngineCookie
from clearance.browser._session import BrowserSession

logger = logging.getLogger("clearance")

# Seconds the headless browser gets before a human is asked to help.
DEFAULT_AUTO_TIMEOUT = 5.0


class ResolverState(enum.Enum):
    """States of a resolution attempt."""

    IDLE = "idle"
    NAVIGATING = "navigating"
    AUTO_SETTLING = "auto_settling"
    AWAITING_INTERACTIVE = "awaiting_interactive"
    INTERACTIVE_SETTLING = "interactive_settling"
    RESOLVED = "resolved"
    FAILED = "failed"


_ACTIVE_STATES = frozenset({
    ResolverState.NAVIGATING,
    ResolverState.AUTO_SETTLING,
    ResolverState.AWAITING_INTERACTIVE,
    ResolverState.INTERACTIVE_SETTLING,
})

_INTERACTIVE_STATES = frozenset({
    ResolverState.AWAITING_INTERACTIVE,
    ResolverState.INTERACTIVE_SETTLING,
})


@dataclass
class HarvestedResult:
    """Resolved page HTML and the cookies harvested with it."""

    html: str
    url: str
    cookies: list[Cookie] = field(default_factory=list)


class PendingChallenge:
    """One in-flight resolution attempt.

    The future is the single-assignment completion slot: ``complete()``
    and ``fail()`` return False instead of raising when it is already
    set.
    """

    def __init__(self, request: Request, future: asyncio.Future):
        self.request = request
        self.future = future
        self.interactive = False
        self.dismissed = False

    @property
    def done(self) -> bool:
        return self.future.done()

    def complete(self, result: HarvestedResult) -> bool:
        if self.future.done():
            return False
        self.future.set_result(result)
        return True

    def fail(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True

    def __repr__(self) -> str:
        return (
            f"<PendingChallenge {self.request.method} {self.request.url} "
            f"done={self.done} interactive={self.interactive}>"
        )


class ChallengeResolver:
    """Solves one challenge at a time in a browser engine.

    Concurrent ``resolve()`` calls are serialized; use separate
    resolvers to solve in parallel.

    Args:
        cookie_store: Receives the harvested cookies.
        engine: Rendering engine. Defaults to PatchrightEngine.
        display: Display provider consulted when the headless attempt
            times out. Defaults to the process environment.
        auto_timeout: Seconds before asking for an interactive browser.
        on_state_change: Called with every ResolverState transition.
    """

    def __init__(
        self,
        cookie_store: CookieStore,
        engine: Engine | None = None,
        display: DisplayProvider | None = None,
        auto_timeout: float = DEFAULT_AUTO_TIMEOUT,
        on_state_change: Callable[[ResolverState], None] | None = None,
    ):
        if engine is None:
            from clearance.browser._patchright import PatchrightEngine

            engine = PatchrightEngine()
        self._cookie_store = cookie_store
        self._engine = engine
        self._display = display or default_display_provider
        self._auto_timeout = auto_timeout
        self._on_state_change = on_state_change
        self._state = ResolverState.IDLE
        self._pending: PendingChallenge | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def pending(self) -> PendingChallenge | None:
        return self._pending

    @property
    def is_active(self) -> bool:
        return self._state in _ACTIVE_STATES

    @property
    def needs_user_input(self) -> bool:
        return self._state in _INTERACTIVE_STATES

    def _set_state(self, state: ResolverState) -> None:
        if state is self._state:
            return
        logger.debug("Resolver %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.warning("State listener failed", exc_info=True)

    async def resolve(self, request: Request) -> HarvestedResult:
        """Solve the challenge served for ``request``.

        Returns the harvested page once its title no longer looks like a
        challenge. Raises NoDisplayContext or EngineStartFailure.
        """
        async with self._lock:
            loop = asyncio.get_running_loop()
            pending = PendingChallenge(request, loop.create_future())
            session = BrowserSession(self._engine)
            self._pending = pending
            self._set_state(ResolverState.NAVIGATING)
            logger.info(
                "Solving challenge for %s %s in browser",
                request.method,
                request.url,
            )
            try:
                started = loop.time()
                await session.start(
                    engine_settings_for(request),
                    build_navigation_request(request),
                    functools.partial(self._on_page_settled, pending, session),
                )
                if not pending.done:
                    self._set_state(ResolverState.AUTO_SETTLING)
                remaining = max(
                    0.0, self._auto_timeout - (loop.time() - started)
                )
                try:
                    return await asyncio.wait_for(
                        asyncio.shield(pending.future), remaining
                    )
                except asyncio.TimeoutError:
                    pass
                return await self._resolve_interactive(pending, session)
            except BaseException:
                self._set_state(ResolverState.FAILED)
                raise
            finally:
                if not pending.done:
                    pending.future.cancel()
                await session.dispose()
                self._pending = None

    async def _resolve_interactive(
        self, pending: PendingChallenge, session: BrowserSession
    ) -> HarvestedResult:
        if pending.done:
            return pending.future.result()
        self._set_state(ResolverState.AWAITING_INTERACTIVE)
        url = pending.request.url
        logger.info(
            "Challenge at %s not solved within %.1fs, "
            "opening interactive browser",
            url,
            self._auto_timeout,
        )
        display = self._display()
        if display is None:
            logger.warning("No display context for interactive solve of %s", url)
            raise NoDisplayContext(url)

        await session.promote_to_interactive(display)
        pending.interactive = True
        if pending.done:
            # Cleared while the surface was opening
            await self._dismiss(pending, session)
        else:
            self._set_state(ResolverState.INTERACTIVE_SETTLING)
        return await pending.future

    async def _on_page_settled(
        self,
        pending: PendingChallenge,
        session: BrowserSession,
        html: str,
        cookies: list[EngineCookie],
        url: str,
    ) -> None:
        if pending.done:
            logger.debug("Ignoring load at %s, attempt already settled", url)
            return
        if is_challenge_html(html):
            logger.debug("Still challenged at %s", url)
            return

        harvested = [cookie_from_engine(c) for c in cookies]
        try:
            # Stores may write to disk
            await asyncio.to_thread(self._cookie_store.save, url, harvested)
        except Exception as e:
            logger.warning(
                "Failed to store harvested cookies for %s", url, exc_info=True
            )
            pending.fail(e)
            return
        if not pending.complete(
            HarvestedResult(html=html, url=url, cookies=harvested)
        ):
            return
        self._set_state(ResolverState.RESOLVED)
        logger.info(
            "Challenge resolved at %s (%d cookies)", url, len(harvested)
        )
        await self._dismiss(pending, session)

    async def _dismiss(
        self, pending: PendingChallenge, session: BrowserSession
    ) -> None:
        if not pending.interactive or pending.dismissed:
            return
        pending.dismissed = True
        await session.close_surface()
