"""
Error taxonomy shared by configuration loading and the proxy layer.

``ConfigError`` is fatal at startup. ``ResolutionError`` and ``UpstreamError``
are reported per request as JSON bodies and never escape the request boundary.
"""


class ConfigError(Exception):
    """Invalid startup configuration (connections file, flags, asset tree)."""


class ResolutionError(Exception):
    """The proxy could not determine a usable upstream target."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UpstreamError(Exception):
    """The outbound call failed before a response was received."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ResponseTooLargeError(Exception):
    """The upstream response exceeded the configured maximum size."""

    def __init__(self, limit: int):
        super().__init__(f"Upstream response exceeds maximum size of {limit} bytes")
        self.limit = limit
