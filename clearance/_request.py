"""Request descriptor and body encoding.

The same encoder serves two callers: the HTTP session when it puts a
body on the wire, and the challenge resolver when it rebuilds the body
for a browser navigation. A browser cannot replay an already-consumed
request body, so the bytes are always re-derived from the declared
content type and the data the caller passed in.
"""

import json
import random
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

from clearance._response import ResponseType


def is_json_mime_type(content_type: str | None) -> bool:
    """Check if a Content-Type declares a JSON body.

    Matches ``application/json``, ``text/json`` and any ``+json``
    structured suffix (``application/problem+json``).
    """
    if not content_type:
        return False
    mime = content_type.lower().split(";")[0].strip()
    return (
        mime in ("application/json", "text/json")
        or mime.endswith("+json")
    )


def _boundary() -> str:
    digits = "".join(str(random.randint(0, 9)) for _ in range(12))
    return f"--clearance-boundary-{digits}"


@dataclass
class _FilePart:
    name: str
    filename: str
    content: bytes
    content_type: str


class FormData:
    """multipart/form-data body builder.

    Fields and files are kept in insertion order. ``finalize()`` renders
    the full body; it can be called more than once and always yields
    the same bytes for the same instance.
    """

    def __init__(self, fields: dict[str, Any] | None = None):
        self.boundary = _boundary()
        self._fields: list[tuple[str, str]] = []
        self._files: list[_FilePart] = []
        for name, value in (fields or {}).items():
            self.add_field(name, value)

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def add_field(self, name: str, value: Any) -> None:
        self._fields.append((name, str(value)))

    def add_file(
        self,
        name: str,
        content: bytes,
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> None:
        self._files.append(_FilePart(name, filename, content, content_type))

    def finalize(self) -> bytes:
        """Render the multipart body to bytes."""
        crlf = b"\r\n"
        delimiter = f"--{self.boundary}".encode("ascii")
        out = bytearray()
        for name, value in self._fields:
            out += delimiter + crlf
            out += (
                f'Content-Disposition: form-data; name="{name}"'
            ).encode("utf-8") + crlf + crlf
            out += value.encode("utf-8") + crlf
        for part in self._files:
            out += delimiter + crlf
            out += (
                f'Content-Disposition: form-data; name="{part.name}"; '
                f'filename="{part.filename}"'
            ).encode("utf-8") + crlf
            out += f"Content-Type: {part.content_type}".encode(
                "utf-8"
            ) + crlf + crlf
            out += part.content + crlf
        out += delimiter + b"--" + crlf
        return bytes(out)

    def __repr__(self) -> str:
        return (
            f"<FormData fields={len(self._fields)} "
            f"files={len(self._files)}>"
        )


@dataclass
class Request:
    """Everything needed to (re)issue one HTTP request.

    ``url`` is absolute with query parameters already merged.
    ``content_type`` is the declared body type; it is kept apart from
    ``headers`` so the body can be re-encoded from ``data``.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    data: Any = None
    content_type: str | None = None
    response_type: ResponseType = ResponseType.TEXT
    extra: dict[str, Any] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lname = name.lower()
        for k, v in self.headers.items():
            if k.lower() == lname:
                return v
        return None

    @property
    def user_agent(self) -> str | None:
        return self.header("user-agent")


def encode_body(request: Request, raw_bytes: bool = True) -> bytes | None:
    """Derive the raw body bytes from a request's data.

    Precedence: multipart form, text, raw bytes, JSON-declared content
    type, mapping (URL-encoded). Any other shape yields no body.
    With ``raw_bytes=False`` (browser navigations) bytes data is one of
    those other shapes.
    """
    data = request.data
    if isinstance(data, FormData):
        return data.finalize()
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray)):
        return bytes(data) if raw_bytes else None
    if data is not None and is_json_mime_type(request.content_type):
        return json.dumps(data).encode("utf-8")
    if isinstance(data, dict):
        return urlencode(data, doseq=True).encode("utf-8")
    return None
