# =============================================================================
# Echo Scene Narrator - Handheld Client Package
# =============================================================================
# This package contains the device-side components: image capture, the
# describe upload client, speech playback, and the pipeline orchestrator that
# sequences them for each shutter press.
# =============================================================================
