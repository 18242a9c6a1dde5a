# =============================================================================
# Echo Scene Narrator - Shared Data Schemas
# =============================================================================
# Pydantic models defining the data contracts that cross component
# boundaries: the captured image handed from ingest/capture to the describe
# and upload steps, the speech synthesis request body, and the server health
# response.
#
# The describe result itself is a plain UTF-8 string and has no model: neither
# side parses structure out of it.
# =============================================================================

from typing import Optional

from pydantic import BaseModel, Field


class ImagePayload(BaseModel):
    """
    A single captured image travelling through one describe request.

    Owned by the request that carries it and discarded once the HTTP call
    completes, successfully or not.

    Attributes:
        data:      Raw image bytes, byte-identical to what was captured/uploaded.
        mime_type: MIME type of the image (e.g., "image/jpeg").
        filename:  Optional original filename.
    """

    data: bytes = Field(..., description="Raw image bytes")
    mime_type: str = Field(default="application/octet-stream", description="Image MIME type")
    filename: Optional[str] = Field(default=None, description="Original filename, if known")

    @property
    def size(self) -> int:
        """Number of image bytes."""
        return len(self.data)


class VoiceSettings(BaseModel):
    """Fixed synthesis parameters sent with every speech request."""

    stability: float = 0.5
    similarity_boost: float = 0.8
    style: float = 0.5
    use_speaker_boost: bool = True


class SpeechRequest(BaseModel):
    """
    JSON body of a text-to-speech call. The voice identifier travels in the
    request URL, not in the body.

    Attributes:
        text:           Text to synthesize.
        model_id:       Synthesis model identifier.
        voice_settings: Stability / similarity / style / speaker-boost knobs.
    """

    text: str
    model_id: str
    voice_settings: VoiceSettings = Field(default_factory=VoiceSettings)


class HealthResponse(BaseModel):
    """
    Server health report.

    Attributes:
        status:            "ok" when the server can describe images,
                           "misconfigured" when the vision credential is unset.
        vision_configured: Whether a vision API credential is present.
        uptime_seconds:    Seconds since the application was created.
    """

    status: str
    vision_configured: bool
    uptime_seconds: float
