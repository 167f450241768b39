"""Typed exceptions for clearance."""


class ClearanceError(Exception):
    """Base exception for all clearance errors."""


class TransportError(ClearanceError):
    """A request failed at the transport level.

    Interceptors see every failure of the HTTP pipeline as a
    TransportError. ``response`` is set when the server answered.
    """

    def __init__(self, message: str, request=None, response=None):
        self.request = request
        self.response = response
        super().__init__(message)


class ConnectionFailed(TransportError):
    """Failed to establish a connection or read the response."""

    def __init__(self, url: str, reason: str, request=None):
        self.url = url
        self.reason = reason
        super().__init__(
            f"Connection failed to {url}: {reason}", request=request
        )


class BadResponse(TransportError):
    """Server answered with a status the request does not accept."""

    def __init__(self, request, response):
        self.status_code = response.status_code
        self.url = response.url
        super().__init__(
            f"HTTP {response.status_code} at {response.url}",
            request=request,
            response=response,
        )


class TooManyRedirects(TransportError):
    """Exceeded the maximum number of redirects."""

    def __init__(self, url: str, max_redirects: int, request=None):
        self.url = url
        self.max_redirects = max_redirects
        super().__init__(
            f"Too many redirects ({max_redirects}) for {url}",
            request=request,
        )


class ChallengeFailed(TransportError):
    """A bot challenge was detected but could not be resolved.

    ``error`` holds the underlying resolution failure, which is also
    chained as ``__cause__``.
    """

    def __init__(self, url: str, error: BaseException, request=None):
        self.url = url
        self.error = error
        super().__init__(
            f"Challenge at {url} could not be resolved: {error}",
            request=request,
        )


class ResolutionError(ClearanceError):
    """Base for failures of a single challenge resolution attempt."""


class NoDisplayContext(ResolutionError):
    """Interactive solving was needed but no display is available."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(
            f"Challenge at {url} needs an interactive browser, "
            "but no display context is available"
        )


class EngineStartFailure(ResolutionError):
    """The rendering engine failed to launch or navigate."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Browser engine failed for {url}: {reason}")


class DetectionDecodeFailure(ClearanceError):
    """Response body could not be decoded for challenge inspection."""
