# =============================================================================
# Echo Scene Narrator - Capture Sources
# =============================================================================
# Device capture collaborators for the pipeline orchestrator. Each source
# exposes ``capture() -> str`` returning the local path (or device URI) of a
# freshly captured still, which the upload client then resolves into bytes.
#
#   - StillCapture:  a still written by the platform camera app to a known
#                    path or URI (the shutter hands us its location).
#   - ScreenCapture: grabs a monitor with mss and stores it as a PNG.
# =============================================================================

import logging
import os
from urllib.parse import unquote, urlparse

import mss
from mss.exception import ScreenShotError
from PIL import Image

from shared.errors import CaptureError

logger = logging.getLogger(__name__)


class StillCapture:
    """
    Capture source backed by an image the device camera writes to a fixed
    location.

    Args:
        image_uri_or_path: Path or ``file://`` / ``http(s)://`` URI of the still.
    """

    def __init__(self, image_uri_or_path: str):
        self._location = image_uri_or_path

    def capture(self) -> str:
        """
        Return the location of the current still.

        Raises:
            CaptureError: If a local still does not exist.
        """
        parsed = urlparse(self._location)
        if parsed.scheme in ("http", "https"):
            return self._location

        path = unquote(parsed.path) if parsed.scheme == "file" else self._location
        if not os.path.isfile(path):
            raise CaptureError(f"No captured image at {path}")

        logger.debug("Using still at %s", path)
        return self._location


class ScreenCapture:
    """
    Screen grab capture using the mss library.

    Each capture overwrites the same PNG file inside ``capture_dir`` so disk
    use stays constant no matter how many cycles run.

    Args:
        capture_dir:   Directory holding the captured PNG.
        monitor_index: Index of the monitor to capture (1 = primary).
    """

    def __init__(self, capture_dir: str, monitor_index: int = 1):
        self._capture_dir = capture_dir
        self._monitor_index = monitor_index
        self._path = os.path.join(capture_dir, "capture.png")

    def grab(self) -> Image.Image:
        """
        Capture a single screenshot of the configured monitor.

        Returns:
            PIL.Image.Image: The captured screenshot in RGB format.
        """
        with mss.mss() as sct:
            # mss monitor list: index 0 = all monitors combined, 1+ = individual
            monitor = sct.monitors[self._monitor_index]
            raw = sct.grab(monitor)

            # mss returns BGRA; convert to PIL Image then to RGB
            image = Image.frombytes("RGB", raw.size, raw.bgra, "raw", "BGRX")

        logger.debug(
            "Captured frame: %dx%d from monitor %d",
            image.width,
            image.height,
            self._monitor_index,
        )
        return image

    def capture(self) -> str:
        """
        Grab the monitor and store it as PNG.

        Returns:
            Path of the stored PNG.

        Raises:
            CaptureError: If the grab or the write fails.
        """
        try:
            image = self.grab()
            os.makedirs(self._capture_dir, exist_ok=True)
            image.save(self._path, format="PNG")
        except (ScreenShotError, IndexError, OSError) as exc:
            raise CaptureError(f"Screen capture failed: {exc}") from exc
        return self._path
