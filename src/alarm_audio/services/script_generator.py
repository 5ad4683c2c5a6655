"""Wake-up script generation via the OpenAI chat completions API.

The prompt combines the alarm date and time, the user's weather, the daily
headlines for the user's news categories and their preferences. The model is
asked to answer with a JSON object holding the script.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from collections.abc import Sequence

    from alarm_audio.core.config import OpenAISettings
    from alarm_audio.db.models.alarms import (
        Alarm,
        DailyContent,
        UserPreferences,
        WeatherData,
    )
    from alarm_audio.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_DURATION = 30

SYSTEM_PROMPT = (
    "You write short spoken wake-up briefings for an alarm clock app. "
    "Write in a calm and encouraging tone, as natural speech meant to be read "
    "aloud. Never use markdown, lists or emoji. Always answer with a JSON object."
)

COMBINED_PROMPT = (
    "Write one continuous wake-up script for the listener. Greet them by name, "
    "mention the date, summarize the weather, then cover the news, sports, "
    "markets and holidays below. Skip any section marked as unavailable. "
    "Keep it under five minutes when spoken."
)

RESPONSE_FORMAT_HINT = """Respond in this JSON format:
{
  "script": "the full spoken content as a string",
  "estimated_duration_seconds": estimated_duration_when_spoken
}"""


class ScriptGenerationError(Exception):
    """Raised when no usable script could be produced."""

    pass


@dataclass(frozen=True)
class CategoryContent:
    """Daily content looked up for one news category."""

    news_category: str
    content: DailyContent | None

    @property
    def available(self) -> bool:
        return self.content is not None


@dataclass(frozen=True)
class GeneratedScript:
    script: str
    estimated_duration_seconds: int = DEFAULT_ESTIMATED_DURATION


def _format_temperature(value: float) -> str:
    return f"{value:g}°F"


def format_alarm_date(alarm: Alarm) -> str:
    if alarm.alarm_date is None:
        return "Date information not available."
    day = alarm.alarm_date
    return f"Today is {day:%A, %B} {day.day}, {day.year}."


def format_alarm_time(alarm: Alarm) -> str | None:
    try:
        parsed = datetime.strptime(alarm.alarm_time_local, "%H:%M")
    except (TypeError, ValueError):
        logger.warning(
            "Unparseable alarm time: alarm_id=%s, value=%r", alarm.id, alarm.alarm_time_local
        )
        return None
    return f"Alarm Time: {parsed:%I:%M %p}"


def format_weather_summary(weather: WeatherData | None) -> str:
    if weather is None:
        return "**Weather:** No weather data available."

    forecast = ""
    if weather.high_temp is not None and weather.low_temp is not None:
        forecast = f"High of {_format_temperature(weather.high_temp)}"
        if weather.current_temp is not None:
            forecast += f", currently {_format_temperature(weather.current_temp)}"
    elif weather.current_temp is not None:
        forecast = f"Currently {_format_temperature(weather.current_temp)}"

    if weather.condition:
        forecast += f", {weather.condition.lower()}"

    return (
        f"**Weather for {weather.location or 'your area'}:**\n"
        f"- Forecast: {forecast or 'Not available'}\n"
        f"- Sunrise: {weather.sunrise_time or 'Not available'}\n"
        f"- Sunset: {weather.sunset_time or 'Not available'}"
    )


def format_content(contents: Sequence[CategoryContent]) -> str:
    available = [c for c in contents if c.available]
    if not available:
        return "No daily content available."

    sections = []
    for result in available:
        row = result.content
        headline = row.headlines_for(result.news_category) or "No news available"
        sections.append(
            f"**{result.news_category.capitalize()} News:**\n"
            f"- Headline: {headline}\n"
            f"- Sports: {row.sports_summary or 'No sports available'}\n"
            f"- Stocks: {row.stocks_summary or 'No market data available'}\n"
            f"- Holidays: {row.holidays or 'No holidays today'}"
        )
    return "\n\n".join(sections)


def format_user_info(
    preferences: UserPreferences | None,
    contents: Sequence[CategoryContent],
) -> str:
    if preferences is None:
        return "No user preferences available."
    categories = ", ".join(c.news_category for c in contents)
    return (
        "**User Preferences:**\n"
        f"- Name: {preferences.preferred_name or 'there'}\n"
        f"- News Categories: {categories}\n"
        f"- Sports Team: {preferences.sports_team or 'none specified'}\n"
        f"- Stocks: {', '.join(preferences.stocks or []) or 'none specified'}"
    )


def build_combined_prompt(
    alarm: Alarm,
    weather: WeatherData | None,
    preferences: UserPreferences | None,
    contents: Sequence[CategoryContent],
) -> str:
    """Assemble the user prompt for a combined wake-up script."""
    parts = [COMBINED_PROMPT, f"**Alarm Date:** {format_alarm_date(alarm)}"]
    alarm_time = format_alarm_time(alarm)
    if alarm_time:
        parts.append(f"**{alarm_time}**")
    parts.extend(
        [
            format_weather_summary(weather),
            format_content(contents),
            format_user_info(preferences, contents),
            RESPONSE_FORMAT_HINT,
        ]
    )
    return "\n\n".join(parts)


def parse_script_response(data: dict[str, Any]) -> GeneratedScript:
    """Extract the script from a chat completions response body.

    Raises:
        ScriptGenerationError: If the response carries no usable script.
    """
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise ScriptGenerationError("No content received from chat completion") from e
    if not content:
        raise ScriptGenerationError("No content received from chat completion")

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise ScriptGenerationError(f"Chat completion returned invalid JSON: {e}") from e

    script = parsed.get("script") if isinstance(parsed, dict) else None
    if not script:
        raise ScriptGenerationError("Invalid response format: missing script")

    duration = parsed.get("estimated_duration_seconds") or DEFAULT_ESTIMATED_DURATION
    try:
        duration = int(duration)
    except (TypeError, ValueError):
        duration = DEFAULT_ESTIMATED_DURATION
    return GeneratedScript(script=script, estimated_duration_seconds=duration)


class ScriptGenerator:
    """Writes wake-up scripts with a chat model.

    Calls are retried with a linearly growing delay and pass through the
    injected rate limiter, if any.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        temperature: float = 0.8,
        max_tokens: int = 1200,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 60.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
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
    ) -> ScriptGenerator:
        return cls(
            api_key=settings.api_key.get_secret_value(),
            base_url=settings.base_url,
            model=settings.chat_model,
            temperature=settings.chat_temperature,
            max_tokens=settings.chat_max_tokens,
            max_retries=settings.chat_max_retries,
            retry_delay=settings.chat_retry_delay_seconds,
            timeout=settings.chat_timeout_seconds,
            rate_limiter=rate_limiter,
        )

    async def __aenter__(self) -> ScriptGenerator:
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

    async def generate_combined_script(
        self,
        alarm: Alarm,
        weather: WeatherData | None,
        preferences: UserPreferences | None,
        contents: Sequence[CategoryContent],
    ) -> GeneratedScript:
        """Write the combined weather and news script for an alarm.

        Raises:
            ScriptGenerationError: If every attempt failed.
        """
        prompt = build_combined_prompt(alarm, weather, preferences, contents)
        return await self.complete(prompt)

    async def complete(self, prompt: str) -> GeneratedScript:
        """Send a prompt, retrying on transport, HTTP and format errors."""
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }

        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                if self._rate_limiter is not None:
                    await self._rate_limiter.acquire()
                response = await self._get_client().post(
                    f"{self._base_url}/chat/completions",
                    json=payload,
                )
                response.raise_for_status()
                return parse_script_response(response.json())
            except httpx.HTTPStatusError as e:
                last_error = ScriptGenerationError(
                    f"OpenAI API error: {e.response.status_code} - {e.response.text}"
                )
            except (httpx.HTTPError, ValueError, ScriptGenerationError) as e:
                last_error = e

            logger.warning(
                "Script generation attempt failed: attempt=%d/%d, error=%s",
                attempt,
                self.max_retries,
                last_error,
            )
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        raise ScriptGenerationError(
            f"Script generation failed after {self.max_retries} attempts: {last_error}"
        ) from last_error
