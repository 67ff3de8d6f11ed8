"""Final mix: stitched video + narration + ducked music -> deliverable MP4."""

import logging
from pathlib import Path

from sizzle.config import Settings, get_settings
from sizzle.render.runner import FFmpegRunner
from sizzle.render.stage import STAGE_MUX, StageOutput
from sizzle.render.workspace import RenderWorkspace

logger = logging.getLogger(__name__)


class FinalMuxer:
    """Mixes the two audio tracks and muxes them with the video stream copied as-is."""

    def __init__(self, runner: FFmpegRunner, settings: Settings | None = None):
        self.runner = runner
        self.settings = settings or get_settings()

    def build_mux_command(
        self,
        video_path: Path,
        narration_path: Path,
        music_path: Path,
        output_path: Path,
        duration: float | None = None,
    ) -> list[str]:
        """Build FFmpeg command for the final mux without executing it."""
        s = self.settings
        cmd = [
            s.ffmpeg_path,
            "-y",
            "-i", str(video_path),
            "-i", str(narration_path),
            "-i", str(music_path),
            "-filter_complex",
            "[1:a][2:a]amix=inputs=2:duration=longest:dropout_transition=0:normalize=0[a]",
            "-map", "0:v:0",
            "-map", "[a]",
            "-c:v", "copy",
            "-c:a", "aac",
            "-b:a", s.render_audio_bitrate,
            "-ar", str(s.render_audio_sample_rate),
        ]
        if duration is not None:
            cmd += ["-t", f"{duration:.3f}"]
        return cmd + ["-movflags", "+faststart", str(output_path)]

    async def mux(
        self,
        video_path: Path,
        narration_path: Path,
        music_path: Path,
        workspace: RenderWorkspace,
        duration: float | None = None,
    ) -> StageOutput:
        """
        Combine the three stage outputs into the final file.

        Returns:
            StageOutput with the probed duration and the file size
        """
        output_path = workspace.path(STAGE_MUX, "final.mp4")
        cmd = self.build_mux_command(video_path, narration_path, music_path, output_path, duration)
        logger.info("[MUX] Combining video, narration and music")
        await self.runner.run(cmd, STAGE_MUX, timeout_s=self.settings.mux_timeout_s)

        probed = await self.runner.probe_duration(output_path, STAGE_MUX)
        byte_size = output_path.stat().st_size
        logger.info(f"[MUX] Final output: {probed:.2f}s, {byte_size} bytes")
        return StageOutput(path=output_path, duration=probed, byte_size=byte_size)
