# =============================================================================
# Echo Scene Narrator - Streaming Multipart Ingest
# =============================================================================
# Extracts the single bounded "image" field from a multipart/form-data body
# without ever buffering anything else.
#
# Built on python-multipart's callback-driven MultipartParser so the body can
# be fed incrementally: either as one pre-buffered blob, as a synchronous
# iterable of chunks, or as the live ASGI request stream. The parsing session
# is identical in all three cases; only the byte source differs.
#
# Memory per request is bounded by ``max_bytes`` plus the per-part header
# limits. Both checks run inside the parser callbacks, before the incoming
# bytes are appended.
# =============================================================================

import logging
from typing import AsyncIterable, Iterable, Mapping, Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect

from config import DEFAULT_MAX_IMAGE_BYTES
from shared.errors import MultipartError, PayloadTooLargeError, RequestFormatError
from shared.schemas import ImagePayload

logger = logging.getLogger(__name__)

_MULTIPART_FORM_DATA = b"multipart/form-data"
_DEFAULT_PART_MIME = "application/octet-stream"

# Per-part header limits; header bytes are buffered for every part, drained or not
MAX_HEADER_BYTES = 8 * 1024
MAX_HEADERS_PER_PART = 32


def _get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for plain dicts too."""
    value = headers.get(name)
    if value is not None:
        return value
    for key, candidate in headers.items():
        if key.lower() == name:
            return candidate
    return None


def _decode(value: Optional[bytes]) -> Optional[str]:
    if value is None:
        return None
    return value.decode("utf-8", errors="replace")


class _IngestSession:
    """
    State for one multipart body being parsed.

    Receives python-multipart callbacks, tracks the headers of the current
    part, and either accumulates (first "image" part) or drops (everything
    else) the part data.
    """

    def __init__(self, boundary: bytes, field_name: str, max_bytes: int):
        self._field_name = field_name
        self._max_bytes = max_bytes

        self._header_field = bytearray()
        self._header_value = bytearray()
        self._part_headers = {}

        self._collecting = False
        self._buffer = bytearray()
        self._mime_type = _DEFAULT_PART_MIME
        self._filename: Optional[str] = None

        self._payload: Optional[ImagePayload] = None
        self._ended = False
        self.bytes_received = 0

        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_end": self._on_end,
            },
        )

    # -----------------------------------------------------------------
    # Parser callbacks
    # -----------------------------------------------------------------

    def _on_part_begin(self) -> None:
        self._part_headers = {}
        self._collecting = False

    def _check_header_size(self, extra: int) -> None:
        if len(self._header_field) + len(self._header_value) + extra > MAX_HEADER_BYTES:
            raise MultipartError("Malformed multipart body: part header too large")

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._check_header_size(end - start)
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._check_header_size(end - start)
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        if len(self._part_headers) >= MAX_HEADERS_PER_PART:
            raise MultipartError("Malformed multipart body: too many part headers")
        name = bytes(self._header_field).strip().lower()
        self._part_headers[name] = bytes(self._header_value).strip()
        self._header_field.clear()
        self._header_value.clear()

    def _on_headers_finished(self) -> None:
        _, params = parse_options_header(self._part_headers.get(b"content-disposition"))
        params = {key.lower(): value for key, value in params.items()}
        name = _decode(params.get(b"name"))

        if name != self._field_name or self._payload is not None:
            # Drain branch: data callbacks for this part are no-ops.
            logger.debug("Draining multipart field %r", name)
            return

        self._collecting = True
        self._buffer = bytearray()
        self._filename = _decode(params.get(b"filename"))
        content_type = self._part_headers.get(b"content-type")
        self._mime_type = _decode(content_type) if content_type else _DEFAULT_PART_MIME

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if not self._collecting:
            return
        if len(self._buffer) + (end - start) > self._max_bytes:
            raise PayloadTooLargeError(self._max_bytes)
        self._buffer += data[start:end]

    def _on_part_end(self) -> None:
        if not self._collecting:
            return
        self._payload = ImagePayload(
            data=bytes(self._buffer),
            mime_type=self._mime_type,
            filename=self._filename,
        )
        self._collecting = False
        self._buffer = bytearray()

    def _on_end(self) -> None:
        self._ended = True

    # -----------------------------------------------------------------
    # Feeding
    # -----------------------------------------------------------------

    def write(self, chunk: bytes) -> None:
        """Feed one chunk of the body to the parser."""
        if not chunk:
            return
        self.bytes_received += len(chunk)
        try:
            self._parser.write(chunk)
        except MultipartParseError as exc:
            raise MultipartError(f"Malformed multipart body: {exc}") from exc

    def finish(self) -> Optional[ImagePayload]:
        """
        Close the session after the byte source is exhausted.

        Returns:
            The extracted ImagePayload, or None if no image field was present.

        Raises:
            MultipartError: If the body ended before the closing boundary.
        """
        try:
            self._parser.finalize()
        except MultipartParseError as exc:
            raise MultipartError(f"Malformed multipart body: {exc}") from exc
        if not self._ended:
            raise MultipartError(
                "Malformed multipart body: stream ended before the closing boundary"
            )
        return self._payload


class MultipartIngest:
    """
    Streaming extractor for the single image field of a describe request.

    Args:
        field_name: Name of the multipart field carrying the image.
        max_bytes:  Upper bound on the image field size; exceeding it aborts
                    the request with PayloadTooLargeError.
    """

    def __init__(self, field_name: str = "image", max_bytes: int = DEFAULT_MAX_IMAGE_BYTES):
        self.field_name = field_name
        self.max_bytes = max_bytes

    def check_content_type(self, headers: Mapping[str, str]) -> bytes:
        """
        Validate the request Content-Type without touching the body.

        Args:
            headers: Request headers.

        Returns:
            The multipart boundary.

        Raises:
            RequestFormatError: If the header is missing, is not
                multipart/form-data, or lacks a boundary.
        """
        content_type = _get_header(headers, "content-type")
        if not content_type:
            raise RequestFormatError("Content-Type must be multipart/form-data")

        ctype, params = parse_options_header(content_type)
        if ctype.strip().lower() != _MULTIPART_FORM_DATA:
            raise RequestFormatError("Content-Type must be multipart/form-data")

        params = {key.lower(): value for key, value in params.items()}
        boundary = params.get(b"boundary")
        if not boundary:
            raise RequestFormatError("multipart/form-data Content-Type is missing a boundary")
        return boundary

    def _open(self, headers: Mapping[str, str]) -> _IngestSession:
        boundary = self.check_content_type(headers)
        return _IngestSession(boundary, self.field_name, self.max_bytes)

    def parse_bytes(self, headers: Mapping[str, str], body: bytes) -> Optional[ImagePayload]:
        """Parse a body that has already been fully materialized."""
        return self.parse_chunks(headers, (body,))

    def parse_chunks(
        self, headers: Mapping[str, str], chunks: Iterable[bytes]
    ) -> Optional[ImagePayload]:
        """
        Parse a body delivered as a synchronous iterable of byte chunks.

        Returns:
            The ImagePayload, or None when the body holds no image field.
        """
        session = self._open(headers)
        try:
            for chunk in chunks:
                session.write(chunk)
        except OSError as exc:
            raise MultipartError(f"Failed to read request body: {exc}") from exc
        return self._finish(session)

    async def parse_stream(
        self, headers: Mapping[str, str], chunks: AsyncIterable[bytes]
    ) -> Optional[ImagePayload]:
        """
        Parse a live request stream incrementally.

        The Content-Type is validated before the first chunk is pulled, so a
        non-multipart request reads zero body bytes.

        Returns:
            The ImagePayload, or None when the body holds no image field.
        """
        session = self._open(headers)
        try:
            async for chunk in chunks:
                session.write(chunk)
        except (OSError, ClientDisconnect) as exc:
            raise MultipartError(f"Failed to read request body: {exc!r}") from exc
        return self._finish(session)

    def _finish(self, session: _IngestSession) -> Optional[ImagePayload]:
        payload = session.finish()
        logger.debug(
            "Multipart body parsed (%d bytes received, image=%s)",
            session.bytes_received,
            payload.size if payload is not None else None,
        )
        return payload
