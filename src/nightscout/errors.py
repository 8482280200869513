"""Error taxonomy for the Nightscout sync client.

Callers choose between two families: ``TransportError`` (the remote could
not be reached or refused the request) and ``DecodeError`` (the remote
answered, but with a body that does not match the expected wire shape).
Configuration and programming errors get their own types so they are never
retried.
"""

from __future__ import annotations


class NightscoutError(Exception):
    """Base class for every error raised by the sync client."""


class TransportError(NightscoutError):
    """The request did not complete with a 2xx response."""


class BadStatusCodeError(TransportError):
    """The remote answered with a non-2xx HTTP status."""

    def __init__(self, status_code: int, url: str = "") -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(f"Nightscout returned HTTP {status_code} for {url or 'request'}")


class NetworkError(TransportError):
    """Connectivity failure or timeout before a response was received."""


class DecodeError(NightscoutError):
    """Response body does not match the expected wire shape."""


class MissingURLError(NightscoutError):
    """No usable Nightscout base address is configured."""


class EncodingError(NightscoutError):
    """An upload payload could not be serialized to JSON."""
