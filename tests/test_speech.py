"""Tests for speech synthesis."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from alarm_audio.services.speech import (
    DEFAULT_VOICE,
    SpeechSynthesisError,
    SpeechSynthesizer,
    estimate_duration_seconds,
    validate_voice,
)

SPEECH_URL = "https://api.openai.com/v1/audio/speech"


def speech_response(content: bytes = b"\x00audio", status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=content,
        request=httpx.Request("POST", SPEECH_URL),
    )


class TestHelpers:
    def test_validate_voice(self):
        assert validate_voice("Alloy") == "alloy"
        assert validate_voice(None) == DEFAULT_VOICE
        assert validate_voice("robot") == DEFAULT_VOICE
        assert validate_voice("robot", default="echo") == "echo"

    def test_estimate_duration(self):
        script = " ".join(["word"] * 150)

        assert estimate_duration_seconds(script) == 60
        assert estimate_duration_seconds(script, speed=2.0) == 30
        assert estimate_duration_seconds("") == 0


class TestSpeechSynthesizer:
    """Tests for the text-to-speech client."""

    @pytest.fixture
    def synthesizer(self):
        return SpeechSynthesizer("sk-test", max_retries=2, retry_delay=0)

    def test_invalid_default_voice(self):
        assert SpeechSynthesizer("sk-test", default_voice="robot").default_voice == DEFAULT_VOICE

    @pytest.mark.asyncio
    async def test_synthesize(self, synthesizer):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = speech_response(b"abc")

            speech = await synthesizer.synthesize("Good morning", voice="shimmer")

        assert speech.audio == b"abc"
        assert speech.file_size == 3
        assert speech.audio_format == "aac"
        payload = mock_post.call_args[1]["json"]
        assert mock_post.call_args[0][0] == SPEECH_URL
        assert payload["voice"] == "shimmer"
        assert payload["input"] == "Good morning"
        assert payload["response_format"] == "aac"
        await synthesizer.aclose()

    @pytest.mark.asyncio
    async def test_empty_script(self, synthesizer):
        with pytest.raises(SpeechSynthesisError):
            await synthesizer.synthesize("   ")

    @pytest.mark.asyncio
    async def test_retries_then_fails(self, synthesizer):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = speech_response(b"overloaded", status_code=500)

            with pytest.raises(SpeechSynthesisError, match="after 2 attempts"):
                await synthesizer.synthesize("Good morning")

        assert mock_post.await_count == 2
        await synthesizer.aclose()

    @pytest.mark.asyncio
    async def test_empty_audio_is_retried(self, synthesizer):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = [speech_response(b""), speech_response(b"ok")]

            speech = await synthesizer.synthesize("Good morning")

        assert speech.audio == b"ok"
        await synthesizer.aclose()
