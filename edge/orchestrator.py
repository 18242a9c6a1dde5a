# =============================================================================
# Echo Scene Narrator - Pipeline Orchestrator
# =============================================================================
# Sequences one pipeline cycle per shutter press:
#
#   IDLE → CAPTURING → UPLOADING → SPEAKING → IDLE
#
# with a transition back to IDLE from any failing state. A trigger that
# arrives while a cycle is in flight is dropped. Every cycle, successful or
# not, is padded to a minimum duration measured from its start; this rate
# limits the shutter and gives the spoken description time to begin.
#
# The UI only reads the state (property or listeners); transitions happen
# exclusively here, under a lock.
# =============================================================================

import enum
import logging
import threading
import time
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

CAPTURE_FAILED_MESSAGE = "Failed to take picture"
PROCESS_FAILED_MESSAGE = "Could not process image"


class PipelineState(enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    UPLOADING = "uploading"
    SPEAKING = "speaking"


def _log_alert(title: str, message: str) -> None:
    logger.error("%s: %s", title, message)


class PipelineOrchestrator:
    """
    State machine driving capture → upload → describe → speak.

    Args:
        capture:           Object with ``capture() -> str`` returning the
                           path/URI of a new still.
        uploader:          Object with ``upload(path_or_uri) -> str``.
        speaker:           Object with fire-and-forget ``speak(text)``.
        alert:             ``alert(title, message)`` callback surfacing a
                           blocking user-visible error; defaults to logging.
        min_cycle_seconds: Floor on cycle duration, measured from cycle start.
        clock:             Monotonic clock in seconds.
        sleep:             Sleep function used for the trailing pad.
    """

    def __init__(
        self,
        capture,
        uploader,
        speaker,
        alert: Optional[Callable[[str, str], None]] = None,
        min_cycle_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._capture = capture
        self._uploader = uploader
        self._speaker = speaker
        self._alert = alert or _log_alert
        self._min_cycle_seconds = min_cycle_seconds
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._state = PipelineState.IDLE
        self._listeners: List[Callable[[PipelineState], None]] = []
        self._worker: Optional[threading.Thread] = None

    # -----------------------------------------------------------------
    # State
    # -----------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state is PipelineState.IDLE

    def add_listener(self, callback: Callable[[PipelineState], None]) -> None:
        """Register a callback invoked with the new state after each transition."""
        self._listeners.append(callback)

    def _set_state(self, new_state: PipelineState) -> None:
        with self._lock:
            old_state = self._state
            self._state = new_state
            if new_state is PipelineState.IDLE:
                self._idle.set()
        logger.debug("Pipeline %s → %s", old_state.value, new_state.value)
        self._notify(new_state)

    def _try_begin(self) -> bool:
        """Guarded IDLE → CAPTURING transition; False when a cycle is in flight."""
        with self._lock:
            if self._state is not PipelineState.IDLE:
                return False
            self._state = PipelineState.CAPTURING
            self._idle.clear()
        logger.debug("Pipeline idle → capturing")
        self._notify(PipelineState.CAPTURING)
        return True

    def _notify(self, state: PipelineState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Pipeline state listener failed")

    # -----------------------------------------------------------------
    # Triggers
    # -----------------------------------------------------------------

    def trigger(self) -> bool:
        """
        Start a cycle on a background thread.

        Returns:
            True if the cycle was started, False if the trigger was dropped
            because a cycle is already in flight.
        """
        if not self._try_begin():
            logger.info("Trigger ignored: pipeline is %s", self._state.value)
            return False

        self._worker = threading.Thread(target=self._run_cycle, name="echo-pipeline", daemon=True)
        self._worker.start()
        return True

    def run_cycle(self) -> bool:
        """
        Run a cycle on the calling thread.

        Returns:
            True if a cycle ran, False if the trigger was dropped.
        """
        if not self._try_begin():
            logger.info("Trigger ignored: pipeline is %s", self._state.value)
            return False
        self._run_cycle()
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the pipeline is idle. Returns False on timeout."""
        return self._idle.wait(timeout)

    # -----------------------------------------------------------------
    # Cycle
    # -----------------------------------------------------------------

    def _run_cycle(self) -> None:
        started_at = self._clock()
        try:
            self._process()
        finally:
            try:
                self._pad(started_at)
            finally:
                self._set_state(PipelineState.IDLE)

    def _process(self) -> None:
        try:
            image_location = self._capture.capture()
        except Exception:
            logger.exception("Capture failed")
            self._raise_alert(CAPTURE_FAILED_MESSAGE)
            return

        self._set_state(PipelineState.UPLOADING)
        try:
            description = self._uploader.upload(image_location)
        except Exception:
            logger.exception("Describe upload failed")
            self._raise_alert(PROCESS_FAILED_MESSAGE)
            return

        logger.info("DESCRIPTION %s", description)
        self._set_state(PipelineState.SPEAKING)
        try:
            self._speaker.speak(description)
        except Exception:
            logger.exception("Speech playback failed to start")

    def _pad(self, started_at: float) -> None:
        remaining = self._min_cycle_seconds - (self._clock() - started_at)
        if remaining > 0:
            logger.debug("Padding cycle by %.2fs", remaining)
            self._sleep(remaining)

    def _raise_alert(self, message: str) -> None:
        try:
            self._alert("Error", message)
        except Exception:
            logger.exception("Alert callback failed")
