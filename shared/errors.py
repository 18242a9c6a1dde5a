# =============================================================================
# Echo Scene Narrator - Error Taxonomy
# =============================================================================
# Typed exceptions raised at component boundaries. The server translates them
# into HTTP status codes in server/app.py; the client turns them into alerts
# (orchestrator) or log lines (speech playback).
# =============================================================================

from typing import Optional


class EchoError(Exception):
    """Base class for every error raised by Echo components."""


class ConfigError(EchoError):
    """A required credential or setting is missing."""


class RequestFormatError(EchoError):
    """The request is not a multipart/form-data upload the server can read."""


class MultipartError(EchoError):
    """The multipart body is malformed or could not be read."""


class PayloadTooLargeError(EchoError):
    """
    The image field exceeded the configured size limit.

    Attributes:
        limit: The byte limit that was crossed.
    """

    def __init__(self, limit: int):
        super().__init__(f"Image exceeds the {limit} byte upload limit")
        self.limit = limit


class AuthError(EchoError):
    """The inference service rejected the configured credential."""


class UpstreamError(EchoError):
    """
    A remote service failed or returned an unusable response.

    Attributes:
        status_code: HTTP status returned by the remote service, if any.
        body:        Raw response body text, kept verbatim for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NetworkError(EchoError):
    """The client could not reach a remote service."""


class CaptureError(EchoError):
    """The device could not produce or read a captured image."""
