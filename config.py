# =============================================================================
# Echo Scene Narrator - Centralized Configuration
# =============================================================================
# Provides a single Config dataclass containing all tunable parameters for
# both the handheld client and the describe server. Parameters are overridable
# via environment variables with the ECHO_ prefix (e.g., ECHO_SERVER_PORT=9000).
# API credentials are read from their conventional variable names
# (OPENAI_API_KEY, ELEVENLABS_API_KEY).
# =============================================================================

import os
import tempfile
from dataclasses import dataclass, field
from typing import Optional

# 10 MiB cap on the uploaded image field
DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_or_none(name: str) -> Optional[str]:
    """Return the environment variable value, treating empty strings as unset."""
    value = os.environ.get(name)
    return value or None


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


def _sample_rate_from_format(output_format: str) -> int:
    """
    Extract the sample rate from an ElevenLabs PCM output format string.

    Args:
        output_format: A format name such as "pcm_22050".

    Returns:
        The sample rate in Hz.

    Raises:
        ValueError: If the format is not a raw PCM format.
    """
    codec, _, rate = output_format.partition("_")
    if codec != "pcm" or not rate.isdigit():
        raise ValueError(f"Unsupported speech output format: {output_format!r}")
    return int(rate)


@dataclass
class Config:
    """
    Centralized configuration for the Echo Scene Narrator system.

    All non-credential fields can be overridden via environment variables
    prefixed with ECHO_.
    """

    # -- Networking --
    server_host: str = "127.0.0.1"
    server_port: int = 8000
    describe_path: str = "/describe"
    cors_enabled: bool = True

    # -- Upload contract --
    image_field_name: str = "image"
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    upload_timeout_seconds: float = 60.0

    # -- Vision inference (OpenAI-compatible chat completions) --
    vision_api_key: Optional[str] = field(default_factory=lambda: _env_or_none("OPENAI_API_KEY"))
    vision_model: str = "gpt-4o-mini"
    vision_base_url: Optional[str] = None  # None = api.openai.com
    vision_timeout_seconds: float = 60.0
    vision_max_tokens: int = 200

    # -- Speech synthesis (ElevenLabs) --
    speech_api_key: Optional[str] = field(default_factory=lambda: _env_or_none("ELEVENLABS_API_KEY"))
    speech_base_url: str = "https://api.elevenlabs.io"
    speech_voice_id: str = "JBFqnCBsd6RMkjVDRZzb"
    speech_model_id: str = "eleven_flash_v2"
    speech_stability: float = 0.5
    speech_similarity_boost: float = 0.8
    speech_style: float = 0.5
    speech_use_speaker_boost: bool = True
    speech_output_format: str = "pcm_22050"
    speech_volume: float = 0.8
    speech_timeout_seconds: float = 30.0

    # -- Pipeline --
    min_cycle_seconds: float = 5.0
    capture_monitor: int = 1
    capture_dir: str = field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "echo-captures")
    )

    # -- Derived (computed post-init) --
    server_url: str = field(init=False)
    endpoint_url: str = field(init=False)
    speech_sample_rate: int = field(init=False)

    def __post_init__(self):
        """Apply environment variable overrides and compute derived fields."""
        self._apply_env_overrides()
        self.server_url = f"http://{self.server_host}:{self.server_port}"
        self.endpoint_url = _env_or_none("ECHO_ENDPOINT_URL") or (
            f"{self.server_url}{self.describe_path}"
        )
        self.speech_sample_rate = _sample_rate_from_format(self.speech_output_format)

    def _apply_env_overrides(self):
        """
        Override config fields from environment variables.

        Looks for ECHO_<FIELD_NAME_UPPERCASE> environment variables and
        applies them with appropriate type conversion.
        """
        field_types = {
            "server_host": str,
            "server_port": int,
            "describe_path": str,
            "cors_enabled": _parse_bool,
            "image_field_name": str,
            "max_image_bytes": int,
            "upload_timeout_seconds": float,
            "vision_model": str,
            "vision_base_url": str,
            "vision_timeout_seconds": float,
            "vision_max_tokens": int,
            "speech_base_url": str,
            "speech_voice_id": str,
            "speech_model_id": str,
            "speech_stability": float,
            "speech_similarity_boost": float,
            "speech_style": float,
            "speech_use_speaker_boost": _parse_bool,
            "speech_output_format": str,
            "speech_volume": float,
            "speech_timeout_seconds": float,
            "min_cycle_seconds": float,
            "capture_monitor": int,
            "capture_dir": str,
        }
        for field_name, field_type in field_types.items():
            env_key = f"ECHO_{field_name.upper()}"
            env_value = os.environ.get(env_key)
            if env_value is not None:
                setattr(self, field_name, field_type(env_value))


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Return the singleton Config instance, creating it on first call.

    Returns:
        Config: The global configuration object.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance
