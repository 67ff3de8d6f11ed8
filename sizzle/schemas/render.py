from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from sizzle.config import Settings
from sizzle.schemas.timeline import Timeline


class DuckingSettings(BaseModel):
    """Music ducking parameters (volume levels are linear gain, 0-1)."""

    enabled: bool = True
    normal_volume: float = Field(default=0.3, ge=0.0, le=1.0)
    ducked_volume: float = Field(default=0.15, ge=0.0, le=1.0)
    fade_duration: float = Field(default=0.2, ge=0.0, allow_inf_nan=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DuckingSettings":
        return cls(
            enabled=settings.ducking_enabled,
            normal_volume=settings.ducking_normal_volume,
            ducked_volume=settings.ducking_ducked_volume,
            fade_duration=settings.ducking_fade_duration_s,
        )


# =============================================================================
# Stage API payloads
# Assets travel as data URLs (``data:<mime>;base64,...``) or http(s) URLs.
# =============================================================================


class StitchRequest(BaseModel):
    timeline: Timeline
    videos: dict[str, str] = Field(default_factory=dict)  # shot_id -> video URL
    stills: dict[str, str] = Field(default_factory=dict)  # shot_id -> image URL


class NarrationAssembleRequest(BaseModel):
    timeline: Timeline
    narration: dict[str, str]  # source_id -> audio URL
    total_duration: float = Field(gt=0, allow_inf_nan=False)


class MusicDuckRequest(BaseModel):
    music_url: str
    timeline: Timeline
    ducking_settings: DuckingSettings = Field(default_factory=DuckingSettings)
    total_duration: float = Field(gt=0, allow_inf_nan=False)


class AssembleRequest(BaseModel):
    video_url: str
    narration_audio_url: str
    music_audio_url: str


class ExportRequest(BaseModel):
    timeline: Timeline
    videos: dict[str, str] = Field(default_factory=dict)
    stills: dict[str, str] = Field(default_factory=dict)
    narration: dict[str, str] = Field(default_factory=dict)
    music: dict[str, str] = Field(default_factory=dict)  # music source_id -> audio URL
    ducking_settings: DuckingSettings | None = None


class StageResponse(BaseModel):
    media_url: str  # data URL of the produced media
    media_type: Literal["video", "audio"]
    duration: float
    byte_size: int
    processing_time_ms: int
    timestamp: datetime


class ExportResponse(StageResponse):
    stage_timings_ms: dict[str, int] = Field(default_factory=dict)
