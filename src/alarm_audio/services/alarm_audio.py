"""Wake-up audio generation for a single alarm.

AlarmAudioGenerator does the work for one alarm inside one database session:
load the alarm and the user's context, write a script, synthesize it, upload
the audio and record its metadata.

AlarmAudioWorker adapts the generator to the queue: it opens a fresh session
per item, bounds each item with a timeout and turns the outcome into a
WorkResult for the dispatcher.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from alarm_audio.db.models.alarms import Alarm, DailyContent, UserPreferences, WeatherData
from alarm_audio.db.models.audio import Audio
from alarm_audio.db.models.base import AudioStatus, AudioType
from alarm_audio.services.dispatcher import WorkResult
from alarm_audio.services.event_log import EventType
from alarm_audio.services.script_generator import CategoryContent, ScriptGenerationError
from alarm_audio.services.speech import SpeechSynthesisError, validate_voice
from alarm_audio.services.storage import StorageError

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from alarm_audio.services.audio_queue import ClaimedItem
    from alarm_audio.services.event_log import EventLogService
    from alarm_audio.services.script_generator import ScriptGenerator
    from alarm_audio.services.speech import SpeechSynthesizer
    from alarm_audio.services.storage import AudioStorage

logger = logging.getLogger(__name__)

DEFAULT_NEWS_CATEGORIES = ("general",)

# Failures of the external pipeline that are reported as a failed clip
GENERATION_ERRORS = (ScriptGenerationError, SpeechSynthesisError, StorageError)


class AlarmNotFoundError(Exception):
    """Raised when the requested alarm does not exist."""

    def __init__(self, alarm_id: uuid.UUID) -> None:
        self.alarm_id = alarm_id
        super().__init__(f"Alarm not found: {alarm_id}")


@dataclass(frozen=True)
class GeneratedClip:
    clip_id: str
    file_name: str
    audio_url: str
    file_size: int
    audio_type: str = AudioType.COMBINED.value

    @classmethod
    def from_audio(cls, audio: Audio) -> GeneratedClip:
        return cls(
            clip_id=str(audio.id),
            file_name=audio.audio_url.rsplit("/", 1)[-1],
            audio_url=audio.audio_url,
            file_size=audio.file_size or 0,
            audio_type=audio.audio_type.value,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "clipId": self.clip_id,
            "fileName": self.file_name,
            "audioUrl": self.audio_url,
            "fileSize": self.file_size,
            "audioType": self.audio_type,
        }


@dataclass(frozen=True)
class FailedClip:
    clip_id: str
    error: str
    audio_type: str = AudioType.COMBINED.value

    def to_dict(self) -> dict[str, Any]:
        return {"clipId": self.clip_id, "error": self.error, "audioType": self.audio_type}


@dataclass
class AudioGenerationResult:
    """Outcome of generating audio for one alarm."""

    success: bool
    message: str
    alarm_id: uuid.UUID
    user_id: uuid.UUID
    generated_clips: list[GeneratedClip] = field(default_factory=list)
    failed_clips: list[FailedClip] = field(default_factory=list)

    @property
    def error(self) -> str | None:
        """Failure summary suitable for the queue's error_message."""
        if self.success:
            return None
        errors = "; ".join(clip.error for clip in self.failed_clips)
        return errors or self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "generatedClips": [clip.to_dict() for clip in self.generated_clips],
            "failedClips": [clip.to_dict() for clip in self.failed_clips],
            "alarmId": str(self.alarm_id),
            "userId": str(self.user_id),
        }


def order_news_categories(categories: Sequence[str] | None) -> list[str]:
    """User categories, defaulting to general, with general always first."""
    ordered = list(dict.fromkeys(categories or DEFAULT_NEWS_CATEGORIES))
    if "general" in ordered:
        ordered.remove("general")
        ordered.insert(0, "general")
    return ordered


def audio_file_name(alarm_id: uuid.UUID, audio_format: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(UTC)).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    return f"{alarm_id}_combined_{stamp}.{audio_format}"


class AlarmAudioGenerator:
    """Generates the combined wake-up clip for one alarm.

    All reads and the metadata insert go through the given session; the
    caller commits.
    """

    def __init__(
        self,
        session: AsyncSession,
        script_generator: ScriptGenerator,
        synthesizer: SpeechSynthesizer,
        storage: AudioStorage,
        *,
        audio_expiration_hours: int = 48,
        event_log: EventLogService | None = None,
    ) -> None:
        self.session = session
        self.script_generator = script_generator
        self.synthesizer = synthesizer
        self.storage = storage
        self.audio_expiration_hours = audio_expiration_hours
        self.event_log = event_log

    async def get_alarm(self, alarm_id: uuid.UUID) -> Alarm:
        result = await self.session.execute(select(Alarm).where(Alarm.id == alarm_id))
        alarm = result.scalar_one_or_none()
        if alarm is None:
            raise AlarmNotFoundError(alarm_id)
        return alarm

    async def get_user_preferences(self, user_id: uuid.UUID) -> UserPreferences | None:
        result = await self.session.execute(
            select(UserPreferences).where(UserPreferences.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_weather(self, user_id: uuid.UUID) -> WeatherData | None:
        query = (
            select(WeatherData)
            .where(WeatherData.user_id == user_id)
            .order_by(WeatherData.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_latest_daily_content(self) -> DailyContent | None:
        query = select(DailyContent).order_by(DailyContent.date.desc()).limit(1)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_category_contents(self, categories: Sequence[str]) -> list[CategoryContent]:
        """Daily content for each category, from the most recent daily row."""
        latest = await self.get_latest_daily_content()

        contents = []
        for category in categories:
            if latest is not None and latest.headlines_for(category) is None:
                logger.debug("No headlines for category: category=%s", category)
            contents.append(CategoryContent(news_category=category, content=latest))
        return contents

    async def get_existing_audio(self, alarm_id: uuid.UUID) -> list[Audio]:
        query = select(Audio).where(
            Audio.alarm_id == alarm_id,
            Audio.audio_type.in_(list(AudioType)),
            Audio.status == AudioStatus.READY,
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def has_existing_audio(self, alarm_id: uuid.UUID) -> bool:
        return bool(await self.get_existing_audio(alarm_id))

    async def generate(
        self,
        alarm_id: uuid.UUID,
        force_regenerate: bool = False,
    ) -> AudioGenerationResult:
        """Generate the combined clip for an alarm.

        Unless forced, an alarm that already has ready audio is reported as
        successful without generating anything.

        Raises:
            AlarmNotFoundError: If the alarm does not exist.
        """
        alarm = await self.get_alarm(alarm_id)

        if not force_regenerate:
            existing = await self.get_existing_audio(alarm_id)
            if existing:
                logger.info(
                    "Audio already exists, skipping generation: alarm_id=%s, clips=%d",
                    alarm_id,
                    len(existing),
                )
                return AudioGenerationResult(
                    success=True,
                    message="Audio already exists for this alarm",
                    alarm_id=alarm.id,
                    user_id=alarm.user_id,
                    generated_clips=[GeneratedClip.from_audio(audio) for audio in existing],
                )

        preferences = await self.get_user_preferences(alarm.user_id)
        weather = await self.get_weather(alarm.user_id)
        if preferences is not None and not preferences.include_weather:
            weather = None
        categories = order_news_categories(preferences.news_categories if preferences else None)
        contents = await self.get_category_contents(categories)

        result = AudioGenerationResult(
            success=False,
            message="",
            alarm_id=alarm.id,
            user_id=alarm.user_id,
        )
        try:
            clip = await self._generate_combined(alarm, preferences, weather, contents)
        except GENERATION_ERRORS as e:
            logger.error("Combined audio generation failed: alarm_id=%s, error=%s", alarm_id, e)
            result.failed_clips.append(FailedClip(clip_id=f"combined_{alarm.id}", error=str(e)))
        else:
            result.generated_clips.append(clip)
            if self.event_log is not None:
                await self.event_log.log_event(
                    EventType.COMBINED_AUDIO_GENERATED,
                    alarm.user_id,
                    {"alarm_id": str(alarm.id)},
                )

        result.success = bool(result.generated_clips)
        result.message = (
            f"Generated {len(result.generated_clips)} audio clips successfully"
            if result.success
            else "Failed to generate any audio clips"
        )
        return result

    async def _generate_combined(
        self,
        alarm: Alarm,
        preferences: UserPreferences | None,
        weather: WeatherData | None,
        contents: Sequence[CategoryContent],
    ) -> GeneratedClip:
        voice = validate_voice(
            preferences.tts_voice if preferences else None,
            self.synthesizer.default_voice,
        )
        now = datetime.now(UTC)
        file_name = audio_file_name(alarm.id, self.synthesizer.audio_format, now)

        script = await self.script_generator.generate_combined_script(
            alarm, weather, preferences, contents
        )
        speech = await self.synthesizer.synthesize(script.script, voice)
        upload = await self.storage.upload_audio_async(
            speech.audio,
            file_name,
            audio_type=AudioType.COMBINED.value,
        )

        audio = Audio(
            user_id=alarm.user_id,
            alarm_id=alarm.id,
            audio_type=AudioType.COMBINED,
            status=AudioStatus.READY,
            audio_url=upload.public_url,
            script_text=script.script,
            duration_seconds=speech.duration_seconds,
            file_size=speech.file_size,
            cache_status="pending",
            generated_at=now,
            expires_at=now + timedelta(hours=self.audio_expiration_hours),
        )
        self.session.add(audio)
        await self.session.flush()

        logger.info(
            "Combined audio generated: alarm_id=%s, voice=%s, size=%d, duration=%ds",
            alarm.id,
            voice,
            speech.file_size,
            speech.duration_seconds,
        )
        return GeneratedClip(
            clip_id=f"combined_{alarm.id}",
            file_name=file_name,
            audio_url=upload.public_url,
            file_size=speech.file_size,
        )


class AlarmAudioWorker:
    """Queue worker that generates audio for the alarm of a claimed item.

    Attributes:
        timeout_seconds: Upper bound on one item's processing time.
        skip_existing: Report success without regenerating when ready audio
            already exists for the alarm.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        script_generator: ScriptGenerator,
        synthesizer: SpeechSynthesizer,
        storage: AudioStorage,
        *,
        timeout_seconds: float = 240.0,
        audio_expiration_hours: int = 48,
        skip_existing: bool = True,
        event_log: EventLogService | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.script_generator = script_generator
        self.synthesizer = synthesizer
        self.storage = storage
        self.timeout_seconds = timeout_seconds
        self.audio_expiration_hours = audio_expiration_hours
        self.skip_existing = skip_existing
        self.event_log = event_log

    def _generator(self, session: AsyncSession) -> AlarmAudioGenerator:
        return AlarmAudioGenerator(
            session,
            self.script_generator,
            self.synthesizer,
            self.storage,
            audio_expiration_hours=self.audio_expiration_hours,
            event_log=self.event_log,
        )

    async def generate_for_alarm(
        self,
        alarm_id: uuid.UUID,
        force_regenerate: bool = False,
    ) -> AudioGenerationResult:
        """Generate audio for an alarm in its own session and commit it.

        Raises:
            AlarmNotFoundError: If the alarm does not exist.
        """
        async with self._session_factory() as session:
            try:
                result = await self._generator(session).generate(alarm_id, force_regenerate)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return result

    async def has_existing_audio(self, alarm_id: uuid.UUID) -> bool:
        async with self._session_factory() as session:
            return await self._generator(session).has_existing_audio(alarm_id)

    async def process(self, item: ClaimedItem) -> WorkResult:
        """Generate audio for a claimed queue item.

        Only unexpected exceptions escape; the dispatcher records those as
        failures too.
        """
        try:
            result = await asyncio.wait_for(
                self.generate_for_alarm(item.alarm_id, force_regenerate=not self.skip_existing),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                "Audio generation timed out: item_id=%s, alarm_id=%s, timeout=%.0fs",
                item.item_id,
                item.alarm_id,
                self.timeout_seconds,
            )
            return WorkResult.failed(
                f"Audio generation timed out after {self.timeout_seconds:.0f} seconds"
            )
        except AlarmNotFoundError as e:
            logger.warning("Queue item references a missing alarm: item_id=%s", item.item_id)
            return WorkResult.failed(str(e))

        if result.success:
            return WorkResult.ok()
        return WorkResult.failed(result.error or "Unknown error")
