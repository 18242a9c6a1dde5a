# =============================================================================
# Echo Scene Narrator - Vision Describe Adapter
# =============================================================================
# Provides the VisionDescriber class that submits one captured image plus a
# fixed instruction prompt to an OpenAI-compatible vision-language model and
# returns its textual answer untouched.
#
# The answer format (short scene sentence + distance estimate) is enforced
# only by the prompt; no parsing or validation is applied to the reply.
# =============================================================================

import base64
import logging
from typing import Optional

import openai
from openai import OpenAI

from shared.errors import AuthError, ConfigError, UpstreamError
from shared.schemas import ImagePayload

logger = logging.getLogger(__name__)

DESCRIBE_PROMPT = (
    "You are the eyes of a person who cannot see this scene. Analyze this image and provide:\n"
    "1. A short description of what is directly in front of the camera, at most one "
    "sentence and no more than ten words. If the main subject is a person, include a "
    "guess at what they are doing.\n"
    "2. An estimated distance range in feet from the camera to the main object or "
    "subject directly in front.\n"
    "\n"
    "Format your response as plain text with the description followed by the distance "
    "estimate. If you cannot confidently estimate the distance, say that you cannot "
    "confidently estimate the distance."
)


def encode_data_url(image: ImagePayload) -> str:
    """
    Encode an image as an inline ``data:`` URL tagged with its MIME type.

    Args:
        image: The captured image.

    Returns:
        A string of the form ``data:<mime>;base64,<payload>``.
    """
    encoded = base64.b64encode(image.data).decode("ascii")
    return f"data:{image.mime_type};base64,{encoded}"


class VisionDescriber:
    """
    Single-turn scene description through a vision-language chat model.

    The OpenAI client is constructed once per process and injected, so tests
    can substitute a fake exposing ``chat.completions.create``.

    Args:
        client:     An ``openai.OpenAI`` (or API-compatible) client.
        model:      Model name to request.
        prompt:     Instruction text sent alongside the image.
        max_tokens: Upper bound on the generated answer length.
    """

    def __init__(
        self,
        client,
        model: str,
        prompt: str = DESCRIBE_PROMPT,
        max_tokens: Optional[int] = 200,
    ):
        self._client = client
        self._model = model
        self._prompt = prompt
        self._max_tokens = max_tokens

    @classmethod
    def from_config(cls, config) -> "VisionDescriber":
        """
        Build a describer with a real OpenAI client from the process config.

        Raises:
            ConfigError: If no vision API key is configured.
        """
        if not config.vision_api_key:
            raise ConfigError("Missing OPENAI_API_KEY environment variable.")

        logger.info(
            "Creating vision client (model=%s, base_url=%s)",
            config.vision_model,
            config.vision_base_url or "default",
        )
        client = OpenAI(
            api_key=config.vision_api_key,
            base_url=config.vision_base_url,
            timeout=config.vision_timeout_seconds,
            max_retries=0,
        )
        return cls(
            client=client,
            model=config.vision_model,
            max_tokens=config.vision_max_tokens,
        )

    @property
    def model(self) -> str:
        return self._model

    def build_messages(self, image: ImagePayload) -> list:
        """Build the single user turn: prompt text plus inline image data."""
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self._prompt},
                    {"type": "image_url", "image_url": {"url": encode_data_url(image)}},
                ],
            }
        ]

    def describe(self, image: ImagePayload) -> str:
        """
        Describe the scene in ``image``.

        Args:
            image: The uploaded image payload.

        Returns:
            The model's answer text, verbatim.

        Raises:
            AuthError:     The credential was rejected.
            UpstreamError: Any other inference failure, including an empty reply.
        """
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=self.build_messages(image),
                max_tokens=self._max_tokens,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise AuthError(f"Vision API rejected the credential: {exc}") from exc
        except openai.OpenAIError as exc:
            raise UpstreamError(f"Vision inference failed: {exc}") from exc

        choices = getattr(response, "choices", None)
        if not choices:
            raise UpstreamError("Vision inference returned no choices")

        text = choices[0].message.content
        if not text:
            raise UpstreamError("Vision inference returned an empty answer")

        logger.debug("Vision answer (%d chars): %s", len(text), text[:80])
        return text

    def close(self) -> None:
        """Release the underlying HTTP client, if it has one."""
        close = getattr(self._client, "close", None)
        if callable(close):
            close()
