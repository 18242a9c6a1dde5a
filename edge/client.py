# =============================================================================
# Echo Scene Narrator - Describe Upload Client
# =============================================================================
# Provides the DescribeClient class responsible for resolving a captured
# image (local path or device URI) into bytes, sending it to the describe
# endpoint as a multipart "image" field, and returning the description text.
#
# Exactly one attempt per upload: retrying is left to the user, who can press
# the shutter again once the pipeline is idle.
# =============================================================================

import logging
import mimetypes
import os
import time
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from shared.errors import CaptureError, NetworkError, UpstreamError
from shared.schemas import ImagePayload

logger = logging.getLogger(__name__)

_DEFAULT_IMAGE_MIME = "image/jpeg"


def _guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    if mime_type and mime_type.startswith("image/"):
        return mime_type
    return _DEFAULT_IMAGE_MIME


class DescribeClient:
    """
    HTTP client for the describe endpoint.

    Args:
        endpoint_url: Full URL of the describe endpoint
                      (e.g., "http://127.0.0.1:8000/describe").
        field_name:   Multipart field name the server expects.
        timeout:      Seconds to wait for the whole round-trip.
        session:      Optional pre-built requests.Session to share.
    """

    def __init__(
        self,
        endpoint_url: str,
        field_name: str = "image",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self._endpoint_url = endpoint_url
        self._field_name = field_name
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def endpoint_url(self) -> str:
        return self._endpoint_url

    def load_image(self, image_uri_or_path: str) -> ImagePayload:
        """
        Resolve a captured image into raw bytes.

        Supports plain filesystem paths, ``file://`` URIs and ``http(s)://``
        URIs. The MIME type is derived from the file extension.

        Args:
            image_uri_or_path: Where the device stored the capture.

        Returns:
            ImagePayload with the image bytes, MIME type and filename.

        Raises:
            CaptureError: If the image cannot be read.
        """
        parsed = urlparse(image_uri_or_path)

        if parsed.scheme in ("http", "https"):
            try:
                response = self._session.get(image_uri_or_path, timeout=self._timeout)
                response.raise_for_status()
            except requests.exceptions.RequestException as exc:
                raise CaptureError(f"Could not fetch image {image_uri_or_path}: {exc}") from exc
            filename = os.path.basename(parsed.path) or "capture"
            content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
            mime_type = content_type if content_type.startswith("image/") else _guess_mime_type(filename)
            return ImagePayload(data=response.content, mime_type=mime_type, filename=filename)

        if parsed.scheme == "file":
            path = unquote(parsed.path)
        else:
            path = image_uri_or_path

        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as exc:
            raise CaptureError(f"Could not read image {path}: {exc}") from exc

        filename = os.path.basename(path)
        return ImagePayload(data=data, mime_type=_guess_mime_type(filename), filename=filename)

    def upload(self, image_uri_or_path: str) -> str:
        """
        Send one captured image to the describe endpoint.

        Args:
            image_uri_or_path: Local path or device URI of the capture.

        Returns:
            The description text exactly as the server returned it.

        Raises:
            CaptureError:  The image could not be read.
            NetworkError:  The request could not be completed.
            UpstreamError: The server answered with a non-success status;
                           carries ``status_code`` and the body verbatim.
        """
        image = self.load_image(image_uri_or_path)
        files = {self._field_name: (image.filename or "capture", image.data, image.mime_type)}

        start = time.time()
        try:
            response = self._session.post(self._endpoint_url, files=files, timeout=self._timeout)
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Could not reach {self._endpoint_url}: {exc}") from exc
        elapsed_ms = (time.time() - start) * 1000.0

        text = response.text
        if not response.ok:
            logger.warning(
                "Describe request failed with %d after %.1fms: %s",
                response.status_code, elapsed_ms, text,
            )
            raise UpstreamError(
                f"Request failed ({response.status_code}): {text}",
                status_code=response.status_code,
                body=text,
            )

        logger.info(
            "Uploaded %s (%d KB, %s) → described in %.1fms",
            image.filename, image.size // 1024, image.mime_type, elapsed_ms,
        )
        return text

    def wait_for_server(self, timeout: float = 300, poll_interval: float = 5.0) -> bool:
        """
        Block until the server's /health endpoint reports it can describe.

        Args:
            timeout:       Maximum seconds to wait for the server.
            poll_interval: Seconds between health check polls.

        Returns:
            True if the server is ready, False if timeout expired.
        """
        parsed = urlparse(self._endpoint_url)
        url = f"{parsed.scheme}://{parsed.netloc}/health"
        start = time.time()

        logger.info("Waiting for server at %s (timeout=%ds)...", url, timeout)

        while (time.time() - start) < timeout:
            try:
                response = self._session.get(url, timeout=5)
                if response.status_code == 200:
                    data = response.json()
                    if data.get("vision_configured", False):
                        logger.info("Server is ready.")
                        return True
                    logger.warning("Server responded but has no vision credential configured...")
            except requests.exceptions.ConnectionError:
                logger.debug("Server not reachable yet...")
            except (requests.exceptions.RequestException, ValueError):
                logger.debug("Health check error", exc_info=True)

            time.sleep(poll_interval)

        logger.error("Timed out waiting for server after %ds.", timeout)
        return False
