"""Display contexts for interactive challenge solving.

When a challenge does not clear on its own, the browser has to be put
in front of a human. That needs a display the browser can open a
window on; a provider answers "is there one right now?".
"""

import logging
import os
import platform
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger("clearance")


@dataclass(frozen=True)
class DisplayContext:
    """A display a visible browser window can be opened on.

    ``display`` is the X11/Wayland display name on Linux, None where the
    platform has a single native window server (macOS, Windows).
    """

    display: str | None = None
    variable: str = "DISPLAY"
    width: int = 1280
    height: int = 800

    def env(self) -> dict[str, str] | None:
        """Environment for a browser process targeting this display."""
        if self.display is None:
            return None
        env = dict(os.environ)
        env[self.variable] = self.display
        return env


DisplayProvider = Callable[[], "DisplayContext | None"]


def detect_display() -> tuple[str, str] | None:
    """Return (variable, value) for DISPLAY or WAYLAND_DISPLAY if set."""
    for var in ("DISPLAY", "WAYLAND_DISPLAY"):
        value = os.environ.get(var, "").strip()
        if value:
            return var, value
    return None


def default_display_provider() -> DisplayContext | None:
    """Display context for the current process, if it has one.

    macOS and Windows always have a window server. On Linux a display
    is only available when DISPLAY/WAYLAND_DISPLAY is set (desktop
    session, Xvfb, VNC).
    """
    system = platform.system()
    if system in ("Darwin", "Windows"):
        return DisplayContext()
    found = detect_display()
    if found is None:
        logger.debug("No DISPLAY/WAYLAND_DISPLAY set")
        return None
    variable, display = found
    return DisplayContext(display=display, variable=variable)


def no_display() -> None:
    """Provider for headless-only deployments."""
    return None
