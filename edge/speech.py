# =============================================================================
# Echo Scene Narrator - Speech Playback
# =============================================================================
# Turns a scene description into audio: the text is synthesized by the
# ElevenLabs text-to-speech REST API as raw 16-bit mono PCM, then played on
# the default output device through PyAudio.
#
# Speech is best-effort. Every failure is logged and swallowed at the
# SpeechPlayback boundary so that losing audio never stalls the pipeline.
# =============================================================================

import logging
import threading
from typing import Optional

import numpy as np
import requests

from shared.errors import ConfigError, NetworkError, UpstreamError
from shared.schemas import SpeechRequest, VoiceSettings

logger = logging.getLogger(__name__)


class SpeechSynthesizer:
    """
    Client for the ElevenLabs text-to-speech endpoint.

    Args:
        api_key:        ElevenLabs API key (``xi-api-key`` header). May be None,
                        in which case every synthesis fails with ConfigError.
        voice_id:       Voice identifier placed in the request URL.
        model_id:       Synthesis model identifier.
        voice_settings: Fixed stability / similarity / style / boost settings.
        output_format:  Raw PCM output format, e.g. "pcm_22050".
        base_url:       API base URL.
        timeout:        Seconds to wait for the audio response.
        session:        Optional pre-built requests.Session to share.
    """

    def __init__(
        self,
        api_key: Optional[str],
        voice_id: str,
        model_id: str,
        voice_settings: Optional[VoiceSettings] = None,
        output_format: str = "pcm_22050",
        base_url: str = "https://api.elevenlabs.io",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self._api_key = api_key
        self._voice_id = voice_id
        self._model_id = model_id
        self._voice_settings = voice_settings or VoiceSettings()
        self._output_format = output_format
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "SpeechSynthesizer":
        return cls(
            api_key=config.speech_api_key,
            voice_id=config.speech_voice_id,
            model_id=config.speech_model_id,
            voice_settings=VoiceSettings(
                stability=config.speech_stability,
                similarity_boost=config.speech_similarity_boost,
                style=config.speech_style,
                use_speaker_boost=config.speech_use_speaker_boost,
            ),
            output_format=config.speech_output_format,
            base_url=config.speech_base_url,
            timeout=config.speech_timeout_seconds,
        )

    def build_request(self, text: str) -> SpeechRequest:
        return SpeechRequest(text=text, model_id=self._model_id, voice_settings=self._voice_settings)

    def synthesize(self, text: str) -> bytes:
        """
        Synthesize ``text`` into raw PCM audio.

        Raises:
            ConfigError:   No API key configured.
            NetworkError:  The request could not be completed.
            UpstreamError: The service answered with a non-success status.
        """
        if not self._api_key:
            raise ConfigError("Missing ELEVENLABS_API_KEY environment variable.")

        url = f"{self._base_url}/v1/text-to-speech/{self._voice_id}"
        try:
            response = self._session.post(
                url,
                params={"output_format": self._output_format},
                headers={"xi-api-key": self._api_key},
                json=self.build_request(text).model_dump(),
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Could not reach speech service: {exc}") from exc

        if not response.ok:
            raise UpstreamError(
                f"ElevenLabs API error: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        logger.debug("Synthesized %d chars → %d audio bytes", len(text), len(response.content))
        return response.content


class AudioPlayer:
    """
    Plays raw 16-bit mono PCM on the default output device.

    Playback runs on a daemon thread; ``play`` returns as soon as that thread
    has started.

    Args:
        sample_rate: PCM sample rate in Hz.
        volume:      Linear gain in [0, 1] applied before playback.
    """

    def __init__(self, sample_rate: int = 22050, volume: float = 0.8):
        self._sample_rate = sample_rate
        self._volume = volume

    def decode(self, pcm: bytes) -> bytes:
        """Apply the volume gain to little-endian int16 PCM."""
        usable = len(pcm) - (len(pcm) % 2)
        samples = np.frombuffer(pcm[:usable], dtype="<i2").astype(np.float32)
        samples = np.clip(samples * self._volume, -32768, 32767)
        return samples.astype("<i2").tobytes()

    def _write(self, audio: bytes) -> None:
        import pyaudio

        p = pyaudio.PyAudio()
        try:
            stream = p.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=self._sample_rate,
                output=True,
            )
            try:
                stream.write(audio)
                stream.stop_stream()
            finally:
                stream.close()
        finally:
            p.terminate()

    def _play_blocking(self, audio: bytes) -> None:
        try:
            self._write(audio)
        except Exception:
            logger.exception("Audio playback failed")

    def play(self, pcm: bytes) -> threading.Thread:
        """
        Decode ``pcm`` and start playing it in the background.

        Returns:
            The playback thread.
        """
        audio = self.decode(pcm)
        thread = threading.Thread(target=self._play_blocking, args=(audio,), daemon=True)
        thread.start()
        logger.debug(
            "Playback started (%.2fs of audio)",
            len(audio) / 2 / self._sample_rate,
        )
        return thread


class SpeechPlayback:
    """
    Speaks descriptions: synthesize, then start playback.

    Args:
        synthesizer: Object with ``synthesize(text) -> bytes``.
        player:      Object with ``play(pcm)``.
    """

    def __init__(self, synthesizer, player):
        self._synthesizer = synthesizer
        self._player = player

    @classmethod
    def from_config(cls, config) -> "SpeechPlayback":
        if not config.speech_api_key:
            logger.warning("ELEVENLABS_API_KEY is not set; descriptions will not be spoken")
        return cls(
            synthesizer=SpeechSynthesizer.from_config(config),
            player=AudioPlayer(sample_rate=config.speech_sample_rate, volume=config.speech_volume),
        )

    def say(self, text: str) -> None:
        """
        Synthesize ``text`` and start playing it.

        Never raises: a failure at either step is logged and dropped.
        """
        try:
            pcm = self._synthesizer.synthesize(text)
            self._player.play(pcm)
        except Exception:
            logger.exception("Speech generation failed")

    def speak(self, text: str) -> threading.Thread:
        """
        Fire-and-forget ``say``: returns immediately.

        Returns:
            The background thread running synthesis and playback start.
        """
        thread = threading.Thread(target=self.say, args=(text,), daemon=True)
        thread.start()
        return thread
