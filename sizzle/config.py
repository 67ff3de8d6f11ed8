import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Sizzle Render API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Canonical video format every clip is normalized to before concatenation
    render_output_width: int = 1920
    render_output_height: int = 1080
    render_fps: int = 30
    render_video_codec: str = "libx264"
    render_video_preset: str = "fast"
    render_video_crf: int = 23
    render_pad_color: str = "black"

    # Audio
    render_audio_sample_rate: int = 44100
    render_audio_bitrate: str = "192k"  # final mux (AAC)
    intermediate_audio_codec: str = "libmp3lame"
    intermediate_audio_quality: str = "2"

    # Narration loudness target (EBU R128 broadcast level)
    narration_loudness_i: float = -23.0
    narration_loudness_lra: float = 7.0
    narration_loudness_tp: float = -2.0

    # Music ducking
    ducking_lookahead_s: float = 0.2
    ducking_enabled: bool = True
    ducking_normal_volume: float = 0.3
    ducking_ducked_volume: float = 0.15
    ducking_fade_duration_s: float = 0.2

    # Timeline builder
    cinematic_shot_duration_s: float = 8.0

    # Stage budgets (wall-clock seconds)
    stitch_timeout_s: float = 300.0
    narration_timeout_s: float = 30.0
    music_timeout_s: float = 30.0
    mux_timeout_s: float = 60.0
    probe_timeout_s: float = 15.0
    asset_fetch_timeout_s: float = 60.0

    # Orchestration
    render_temp_dir: str = ""  # empty = system temp dir
    render_parallel_stages: bool = False
    stderr_tail_chars: int = 2000


@lru_cache
def get_settings() -> Settings:
    return Settings()
