"""
Transcoder capability.

The orchestrator talks to media processing only through this protocol, one
method per stage. ``FFmpegTranscoder`` is the production implementation; an
in-process codec library or a test fake can stand in without changing the
orchestrator.
"""

from pathlib import Path
from typing import Protocol, Sequence

from sizzle.config import Settings, get_settings
from sizzle.render.assets import AssetLookup, AssetMaterializer
from sizzle.render.audio_mixer import AudioMixer
from sizzle.render.muxer import FinalMuxer
from sizzle.render.runner import FFmpegRunner
from sizzle.render.stage import StageOutput
from sizzle.render.stitcher import VideoStitcher
from sizzle.render.workspace import RenderWorkspace
from sizzle.schemas.render import DuckingSettings
from sizzle.schemas.timeline import MusicClip, NarrationClip, VideoClip


class Transcoder(Protocol):
    async def stitch_video(
        self,
        clips: Sequence[VideoClip],
        assets: AssetLookup,
        workspace: RenderWorkspace,
    ) -> StageOutput: ...

    async def render_narration(
        self,
        clips: Sequence[NarrationClip],
        assets: AssetLookup,
        total_duration: float,
        workspace: RenderWorkspace,
    ) -> StageOutput: ...

    async def render_music(
        self,
        music_clips: Sequence[MusicClip],
        assets: AssetLookup,
        narration_clips: Sequence[NarrationClip],
        ducking: DuckingSettings,
        total_duration: float,
        workspace: RenderWorkspace,
    ) -> StageOutput: ...

    async def mux(
        self,
        video_path: Path,
        narration_path: Path,
        music_path: Path,
        workspace: RenderWorkspace,
        duration: float | None = None,
    ) -> StageOutput: ...


class FFmpegTranscoder:
    """Transcoder backed by the ffmpeg/ffprobe executables."""

    def __init__(
        self,
        settings: Settings | None = None,
        runner: FFmpegRunner | None = None,
        materializer: AssetMaterializer | None = None,
    ):
        self.settings = settings or get_settings()
        self.runner = runner or FFmpegRunner(self.settings)
        self.materializer = materializer or AssetMaterializer(self.settings)
        self.stitcher = VideoStitcher(self.runner, self.materializer, self.settings)
        self.audio_mixer = AudioMixer(self.runner, self.materializer, self.settings)
        self.muxer = FinalMuxer(self.runner, self.settings)

    async def stitch_video(self, clips, assets, workspace):
        return await self.stitcher.stitch(clips, assets, workspace)

    async def render_narration(self, clips, assets, total_duration, workspace):
        return await self.audio_mixer.render_narration_track(clips, assets, total_duration, workspace)

    async def render_music(self, music_clips, assets, narration_clips, ducking, total_duration, workspace):
        return await self.audio_mixer.render_music_track(
            music_clips, assets, narration_clips, ducking, total_duration, workspace
        )

    async def mux(self, video_path, narration_path, music_path, workspace, duration=None):
        return await self.muxer.mux(video_path, narration_path, music_path, workspace, duration)
