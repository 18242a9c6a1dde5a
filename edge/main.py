# =============================================================================
# Echo Scene Narrator - Handheld Client Entry Point
# =============================================================================
# Wires capture, upload, speech playback and the pipeline orchestrator
# together behind a minimal terminal front-end:
#
#   - Enter        → shutter press (dropped while a cycle is in flight)
#   - q + Enter    → quit
#
# Also offers a one-shot mode (--describe PATH) that uploads a single image
# and prints the description, useful for checking a server deployment.
# =============================================================================

import argparse
import logging
import sys

from config import get_config
from edge.capture import ScreenCapture, StillCapture
from edge.client import DescribeClient
from edge.orchestrator import PipelineOrchestrator, PipelineState
from edge.speech import SpeechPlayback
from shared.errors import EchoError

logger = logging.getLogger(__name__)


class _SilentSpeaker:
    """Speaker used with --no-speech: logs instead of talking."""

    def speak(self, text: str) -> None:
        logger.info("Speech disabled; not speaking description")


def _terminal_alert(title: str, message: str) -> None:
    print(f"\n[{title}] {message}\n", file=sys.stderr, flush=True)


class EchoDevice:
    """
    Terminal stand-in for the handheld app.

    Builds the pipeline collaborators from config and exposes the shutter as
    a keyboard trigger.

    Args:
        config:      The global Config instance.
        capture:     Capture source (StillCapture or ScreenCapture).
        speak:       Whether to synthesize and play descriptions.
    """

    def __init__(self, config, capture, speak: bool = True):
        self._config = config

        logger.info("Initializing describe client → %s", config.endpoint_url)
        self._client = DescribeClient(
            endpoint_url=config.endpoint_url,
            field_name=config.image_field_name,
            timeout=config.upload_timeout_seconds,
        )
        speaker = SpeechPlayback.from_config(config) if speak else _SilentSpeaker()

        self._pipeline = PipelineOrchestrator(
            capture=capture,
            uploader=self._client,
            speaker=speaker,
            alert=_terminal_alert,
            min_cycle_seconds=config.min_cycle_seconds,
        )
        self._pipeline.add_listener(self._render_state)

    @property
    def client(self) -> DescribeClient:
        return self._client

    @staticmethod
    def _render_state(state: PipelineState) -> None:
        if state is PipelineState.UPLOADING:
            print("Analyzing scene...", flush=True)
        elif state is PipelineState.IDLE:
            print("Ready. Press Enter to describe the scene (q to quit).", flush=True)

    def run(self, wait_for_server: bool = False) -> None:
        """
        Start the interactive trigger loop.

        Blocks until the user quits or stdin closes.
        """
        print("\n" + "=" * 60)
        print("  Echo Scene Narrator — Handheld Client")
        print("=" * 60)
        print(f"  Endpoint    : {self._config.endpoint_url}")
        print(f"  Min cycle   : {self._config.min_cycle_seconds}s")
        print(f"  Voice       : {self._config.speech_voice_id} ({self._config.speech_model_id})")
        print("=" * 60 + "\n")

        if wait_for_server and not self._client.wait_for_server():
            logger.error("Server not available. Exiting.")
            sys.exit(1)

        print("Ready. Press Enter to describe the scene (q to quit).", flush=True)
        try:
            for line in sys.stdin:
                if line.strip().lower() == "q":
                    break
                self._pipeline.trigger()
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received. Shutting down...")
        finally:
            self.stop()

    def stop(self) -> None:
        """Let an in-flight cycle finish before exiting."""
        if not self._pipeline.wait_idle(timeout=self._config.upload_timeout_seconds + 5):
            logger.warning("Exiting with a pipeline cycle still in flight.")
        logger.info("Handheld client stopped.")


def describe_once(config, image_path: str) -> int:
    """Upload one image, print its description, and return an exit code."""
    client = DescribeClient(
        endpoint_url=config.endpoint_url,
        field_name=config.image_field_name,
        timeout=config.upload_timeout_seconds,
    )
    try:
        text = client.upload(image_path)
    except EchoError as exc:
        logger.error("Failed to describe image: %s", exc)
        return 1
    print(text)
    return 0


def main():
    """CLI entry point for the handheld client."""
    parser = argparse.ArgumentParser(
        description="Echo Scene Narrator — Handheld Client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--image", type=str, default=None,
        help="Path or URI where the camera stores each still",
    )
    source.add_argument(
        "--screen", action="store_true",
        help="Capture the screen instead of a camera still",
    )
    source.add_argument(
        "--describe", type=str, default=None, metavar="PATH",
        help="Upload a single image, print its description and exit",
    )
    parser.add_argument(
        "--server-url", type=str, default=None,
        help="Describe endpoint URL (e.g., http://127.0.0.1:8000/describe)",
    )
    parser.add_argument(
        "--min-cycle", type=float, default=None,
        help="Minimum seconds per cycle (overrides config)",
    )
    parser.add_argument("--no-speech", action="store_true", help="Do not speak descriptions")
    parser.add_argument("--wait", action="store_true", help="Wait for the server to be ready")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    config = get_config()
    if args.server_url is not None:
        config.endpoint_url = args.server_url
    if args.min_cycle is not None:
        config.min_cycle_seconds = args.min_cycle

    if args.describe is not None:
        sys.exit(describe_once(config, args.describe))

    if args.screen:
        capture = ScreenCapture(capture_dir=config.capture_dir, monitor_index=config.capture_monitor)
    elif args.image is not None:
        capture = StillCapture(args.image)
    else:
        parser.error("one of --image, --screen or --describe is required")

    device = EchoDevice(config, capture, speak=not args.no_speech)
    device.run(wait_for_server=args.wait)


if __name__ == "__main__":
    main()
