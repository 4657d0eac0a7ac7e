"""ElevenLabs text-to-speech for agent replies.

Provides ElevenLabsTTS, a thin async wrapper over the ElevenLabs REST API
using httpx.AsyncClient. Voice and encoding are fixed per process: 16 kHz
mono linear PCM, wrapped in a WAV container so the published asset plays
in any browser.

Synthesis is optional infrastructure. build_synthesizer() returns None when
no API key is configured and the turn pipeline then records text-only
replies.
"""

from __future__ import annotations

import io
import wave

import httpx
import structlog

from src.voice_agent.config import Settings
from src.voice_agent.errors import IntegrationFailure

logger = structlog.get_logger(__name__)


def pcm_to_wav(pcm: bytes, sample_rate: int, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap raw little-endian PCM frames in a WAV header."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class ElevenLabsTTS:
    """Text-to-speech with a fixed ElevenLabs voice.

    Args:
        api_key: ElevenLabs API key.
        voice_id: ElevenLabs voice identifier.
        model_id: ElevenLabs model (Flash v2.5 by default for latency).
    """

    BASE_URL = "https://api.elevenlabs.io/v1"
    TIMEOUT = 30.0
    SAMPLE_RATE = 16000
    OUTPUT_FORMAT = "pcm_16000"

    def __init__(
        self,
        api_key: str,
        voice_id: str,
        model_id: str = "eleven_flash_v2_5",
    ) -> None:
        self._api_key = api_key
        self._voice_id = voice_id
        self._model_id = model_id

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={
                "xi-api-key": self._api_key,
                "Content-Type": "application/json",
                "Accept": "audio/pcm",
            },
            timeout=self.TIMEOUT,
        )

    async def synthesize_full(self, text: str) -> bytes:
        """Synthesize the whole text and return WAV bytes.

        Raises:
            IntegrationFailure: On HTTP errors or an empty audio body.
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.BASE_URL}/text-to-speech/{self._voice_id}",
                    params={"output_format": self.OUTPUT_FORMAT},
                    json={
                        "text": text,
                        "model_id": self._model_id,
                        "voice_settings": {
                            "stability": 0.5,
                            "similarity_boost": 0.75,
                        },
                    },
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise IntegrationFailure("tts", f"synthesis failed: {exc}") from exc

        pcm = response.content
        if not pcm:
            raise IntegrationFailure("tts", "synthesis returned no audio")

        logger.debug(
            "tts.synthesized",
            text_len=len(text),
            pcm_bytes=len(pcm),
        )
        return pcm_to_wav(pcm, self.SAMPLE_RATE)


def build_synthesizer(settings: Settings) -> ElevenLabsTTS | None:
    """ElevenLabsTTS when configured, otherwise None (text-only replies)."""
    if not settings.ELEVENLABS_API_KEY:
        logger.info("tts.unconfigured", reason="no_elevenlabs_api_key")
        return None
    return ElevenLabsTTS(
        api_key=settings.ELEVENLABS_API_KEY,
        voice_id=settings.ELEVENLABS_VOICE_ID,
        model_id=settings.ELEVENLABS_MODEL_ID,
    )
