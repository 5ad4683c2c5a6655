"""Speech synthesis via the OpenAI audio speech API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from alarm_audio.core.config import OpenAISettings
    from alarm_audio.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

SUPPORTED_VOICES = ("alloy", "ash", "echo", "fable", "onyx", "nova", "sage", "shimmer", "verse")
DEFAULT_VOICE = "nova"

# Average speaking rate used for duration estimates
WORDS_PER_MINUTE = 150

SPEECH_INSTRUCTIONS = (
    "Speak warmly and calmly, like a friend gently waking someone up. "
    "Use a relaxed pace with natural pauses between topics."
)


class SpeechSynthesisError(Exception):
    """Raised when audio could not be synthesized."""

    pass


def validate_voice(voice: str | None, default: str = DEFAULT_VOICE) -> str:
    """Return a supported voice, falling back to the default."""
    if voice and voice.lower() in SUPPORTED_VOICES:
        return voice.lower()
    if voice:
        logger.warning("Unsupported voice requested, using default: voice=%s", voice)
    return default


def estimate_duration_seconds(script: str, speed: float = 1.0) -> int:
    """Estimate spoken duration from the word count and the speaking speed."""
    words = len(script.split())
    return round(words / WORDS_PER_MINUTE * 60 / speed)


@dataclass(frozen=True)
class SynthesizedSpeech:
    audio: bytes
    audio_format: str
    duration_seconds: int

    @property
    def file_size(self) -> int:
        return len(self.audio)


class SpeechSynthesizer:
    """Turns scripts into audio with a text-to-speech model."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini-tts",
        default_voice: str = DEFAULT_VOICE,
        speed: float = 1.0,
        audio_format: str = "aac",
        instructions: str = SPEECH_INSTRUCTIONS,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 30.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self.model = model
        self.default_voice = validate_voice(default_voice)
        self.speed = speed
        self.audio_format = audio_format
        self.instructions = instructions
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._timeout = timeout
        self._rate_limiter = rate_limiter
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: OpenAISettings,
        rate_limiter: RateLimiter | None = None,
    ) -> SpeechSynthesizer:
        return cls(
            api_key=settings.api_key.get_secret_value(),
            base_url=settings.base_url,
            model=settings.tts_model,
            default_voice=settings.tts_voice,
            speed=settings.tts_speed,
            audio_format=settings.tts_format,
            max_retries=settings.tts_max_retries,
            retry_delay=settings.tts_retry_delay_seconds,
            timeout=settings.tts_timeout_seconds,
            rate_limiter=rate_limiter,
        )

    async def __aenter__(self) -> SpeechSynthesizer:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def synthesize(self, script: str, voice: str | None = None) -> SynthesizedSpeech:
        """Synthesize a script.

        Raises:
            SpeechSynthesisError: If every attempt failed or the audio is empty.
        """
        if not script.strip():
            raise SpeechSynthesisError("Cannot synthesize an empty script")

        payload = {
            "model": self.model,
            "input": script,
            "voice": validate_voice(voice, self.default_voice),
            "speed": self.speed,
            "response_format": self.audio_format,
            "instructions": self.instructions,
        }

        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                if self._rate_limiter is not None:
                    await self._rate_limiter.acquire()
                response = await self._get_client().post(
                    f"{self._base_url}/audio/speech",
                    json=payload,
                )
                response.raise_for_status()
                if not response.content:
                    raise SpeechSynthesisError("Speech API returned no audio")
                return SynthesizedSpeech(
                    audio=response.content,
                    audio_format=self.audio_format,
                    duration_seconds=estimate_duration_seconds(script, self.speed),
                )
            except httpx.HTTPStatusError as e:
                last_error = SpeechSynthesisError(
                    f"OpenAI TTS API error: {e.response.status_code} - {e.response.text}"
                )
            except (httpx.HTTPError, SpeechSynthesisError) as e:
                last_error = e

            logger.warning(
                "Speech synthesis attempt failed: attempt=%d/%d, error=%s",
                attempt,
                self.max_retries,
                last_error,
            )
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        raise SpeechSynthesisError(
            f"Speech synthesis failed after {self.max_retries} attempts: {last_error}"
        ) from last_error
