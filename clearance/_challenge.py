"""Bot challenge detection.

Pure logic apart from draining a streamed body. A response is a
challenge when it is a 403/503 HTML page whose ``<title>`` carries one
of the interstitial phrases. The same title predicate decides whether
a page rendered in the browser has cleared the challenge.

The title heuristic is deliberately narrow: challenge variants with
other wording, or challenges delivered as JSON, are not detected.
"""

import json
import logging
from html.parser import HTMLParser

from clearance._errors import DetectionDecodeFailure
from clearance._response import StreamBody

logger = logging.getLogger("clearance")

CHALLENGE_STATUS_CODES = frozenset({403, 503})

CHALLENGE_TITLE_MARKERS = (
    "cloudflare",
    "just a moment",
    "verification required",
)


class _TitleParser(HTMLParser):
    """Collect the text of the first <title> element."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.title: str | None = None
        self._in_title = False
        self._parts: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "title" and self.title is None:
            self._in_title = True

    def handle_endtag(self, tag):
        if tag == "title" and self._in_title:
            self._in_title = False
            self.title = "".join(self._parts)

    def handle_data(self, data):
        if self._in_title:
            self._parts.append(data)

    def close(self):
        super().close()
        # Unterminated <title> still counts
        if self._in_title and self.title is None:
            self.title = "".join(self._parts)


def page_title(html: str) -> str:
    """Return the case-folded text of the first <title>, or ''."""
    parser = _TitleParser()
    parser.feed(html)
    parser.close()
    return (parser.title or "").strip().lower()


def is_challenge_html(html: str) -> bool:
    """Check whether an HTML document is a challenge interstitial."""
    title = page_title(html)
    return any(marker in title for marker in CHALLENGE_TITLE_MARKERS)


def _applies(status_code: int, content_type: str) -> bool:
    return (
        status_code in CHALLENGE_STATUS_CODES
        and "text/html" in (content_type or "")
    )


async def read_text(data) -> str:
    """Decode a response body of any shape to text.

    Raises DetectionDecodeFailure when bytes are not valid UTF-8, a
    stream fails mid-read, or a non-text payload cannot be serialized.
    """
    if isinstance(data, str):
        return data
    if data is None:
        return ""
    try:
        if isinstance(data, (bytes, bytearray)):
            return bytes(data).decode("utf-8")
        if isinstance(data, StreamBody):
            return (await data.read()).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DetectionDecodeFailure(f"body is not UTF-8: {e}") from e
    except Exception as e:
        raise DetectionDecodeFailure(f"stream read failed: {e}") from e
    try:
        return json.dumps(data)
    except (TypeError, ValueError) as e:
        raise DetectionDecodeFailure(
            f"cannot serialize {type(data).__name__} body: {e}"
        ) from e


async def is_challenge(response) -> bool:
    """Detect a bot challenge page in an HTTP response.

    Only 403/503 responses declaring ``text/html`` are inspected; every
    other response is rejected before the body is touched. Bodies that
    cannot be decoded count as "not a challenge".
    """
    if not _applies(
        response.status_code, response.headers.get("content-type", "")
    ):
        return False
    try:
        html = await read_text(response.data)
    except DetectionDecodeFailure as e:
        logger.debug(
            "Challenge detection skipped for %s: %s", response.url, e
        )
        return False
    if is_challenge_html(html):
        logger.info(
            "Challenge detected at %s (HTTP %d, title=%r)",
            response.url,
            response.status_code,
            page_title(html),
        )
        return True
    return False
