"""
Audio track rendering with FFmpeg.

This module handles:
- Narration track: clips laid on a silent base at absolute offsets, mixed
  and loudness-normalized
- Music track: music clips placed on the timeline with the compiled ducking
  automation applied as a per-frame volume expression
- Silence of an exact length when a track has nothing to play

Every track this module writes lasts exactly the requested total duration.
"""

import logging
from pathlib import Path
from typing import Sequence

from sizzle.config import Settings, get_settings
from sizzle.exceptions import MissingAssetError
from sizzle.render.assets import AssetLookup, AssetMaterializer
from sizzle.render.ducking import DuckingAutomation, compile_ducking
from sizzle.render.runner import FFmpegRunner
from sizzle.render.stage import STAGE_MUSIC, STAGE_NARRATION, StageOutput
from sizzle.render.workspace import RenderWorkspace
from sizzle.schemas.render import DuckingSettings
from sizzle.schemas.timeline import MusicClip, NarrationClip

logger = logging.getLogger(__name__)


def _ms(seconds: float) -> int:
    return int(round(seconds * 1000))


class AudioMixer:
    """FFmpeg-based renderer for the narration and music tracks."""

    def __init__(
        self,
        runner: FFmpegRunner,
        materializer: AssetMaterializer,
        settings: Settings | None = None,
    ):
        self.runner = runner
        self.materializer = materializer
        self.settings = settings or get_settings()
        self.ffmpeg_path = self.settings.ffmpeg_path
        self.sample_rate = self.settings.render_audio_sample_rate

    def _output_args(self, total_duration: float, output_path: Path) -> list[str]:
        return [
            "-t", f"{total_duration:.3f}",
            "-c:a", self.settings.intermediate_audio_codec,
            "-q:a", self.settings.intermediate_audio_quality,
            "-ar", str(self.sample_rate),
            "-ac", "2",
            str(output_path),
        ]

    def _silent_base_input(self, total_duration: float) -> list[str]:
        return [
            "-f", "lavfi",
            "-t", f"{total_duration:.3f}",
            "-i", f"anullsrc=r={self.sample_rate}:cl=stereo",
        ]

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def build_silence_command(self, total_duration: float, output_path: Path) -> list[str]:
        return [
            self.ffmpeg_path,
            "-y",
            *self._silent_base_input(total_duration),
            *self._output_args(total_duration, output_path),
        ]

    def build_narration_command(
        self,
        clips: Sequence[NarrationClip],
        input_paths: Sequence[Path],
        total_duration: float,
        output_path: Path,
    ) -> list[str]:
        """
        Build the narration mix command without executing it.

        Input 0 is a silent base of ``total_duration``; input N is clip N-1,
        delayed to its start time. The base keeps the mix at full length even
        when narration ends early.
        """
        inputs = self._silent_base_input(total_duration)
        filter_parts: list[str] = []
        labels = ["[0:a]"]

        for index, (clip, path) in enumerate(zip(clips, input_paths), start=1):
            inputs += ["-i", str(path)]
            chain = []
            if clip.volume is not None:
                chain.append(f"volume={clip.volume}")
            delay_ms = _ms(clip.start_time)
            chain.append(f"adelay={delay_ms}:all=1" if delay_ms > 0 else "anull")
            filter_parts.append(f"[{index}:a]{','.join(chain)}[n{index}]")
            labels.append(f"[n{index}]")

        s = self.settings
        filter_parts.append(
            f"{''.join(labels)}amix=inputs={len(labels)}:duration=first:"
            f"dropout_transition=0:normalize=0[mixed]"
        )
        filter_parts.append(
            f"[mixed]loudnorm=I={s.narration_loudness_i}:"
            f"LRA={s.narration_loudness_lra}:TP={s.narration_loudness_tp}[out]"
        )

        return [
            self.ffmpeg_path,
            "-y",
            *inputs,
            "-filter_complex", ";".join(filter_parts),
            "-map", "[out]",
            *self._output_args(total_duration, output_path),
        ]

    def build_music_command(
        self,
        clips: Sequence[MusicClip],
        input_paths: Sequence[Path],
        automation: DuckingAutomation,
        total_duration: float,
        output_path: Path,
    ) -> list[str]:
        """
        Build the ducked music command without executing it.

        Each music clip is cut to its duration, faded, and delayed to its
        start time; the combined bed then goes through the automation curve
        and is padded with silence up to ``total_duration``.
        """
        inputs: list[str] = []
        filter_parts: list[str] = []
        labels: list[str] = []

        for index, (clip, path) in enumerate(zip(clips, input_paths)):
            inputs += ["-i", str(path)]
            chain = [f"atrim=0:{clip.duration:.3f}", "asetpts=PTS-STARTPTS"]
            if clip.volume is not None:
                chain.append(f"volume={clip.volume}")
            if clip.fade_in:
                chain.append(f"afade=t=in:st=0:d={clip.fade_in}")
            if clip.fade_out:
                fade_start = max(0.0, clip.duration - clip.fade_out)
                chain.append(f"afade=t=out:st={fade_start:.3f}:d={clip.fade_out}")
            delay_ms = _ms(clip.start_time)
            if delay_ms > 0:
                chain.append(f"adelay={delay_ms}:all=1")
            filter_parts.append(f"[{index}:a]{','.join(chain)}[m{index}]")
            labels.append(f"[m{index}]")

        if len(labels) == 1:
            bed = labels[0]
        else:
            filter_parts.append(
                f"{''.join(labels)}amix=inputs={len(labels)}:duration=longest:"
                f"dropout_transition=0:normalize=0[bed]"
            )
            bed = "[bed]"

        expr = automation.to_ffmpeg_expression()
        filter_parts.append(f"{bed}volume='{expr}':eval=frame,apad[out]")

        return [
            self.ffmpeg_path,
            "-y",
            *inputs,
            "-filter_complex", ";".join(filter_parts),
            "-map", "[out]",
            *self._output_args(total_duration, output_path),
        ]

    # ------------------------------------------------------------------
    # Renderers
    # ------------------------------------------------------------------

    async def render_silence(
        self,
        total_duration: float,
        workspace: RenderWorkspace,
        stage: str,
        filename: str = "silence.mp3",
    ) -> StageOutput:
        output_path = workspace.path(stage, filename)
        timeout = (
            self.settings.narration_timeout_s if stage == STAGE_NARRATION else self.settings.music_timeout_s
        )
        await self.runner.run(self.build_silence_command(total_duration, output_path), stage, timeout_s=timeout)
        return StageOutput(path=output_path, duration=total_duration, byte_size=output_path.stat().st_size)

    async def render_narration_track(
        self,
        clips: Sequence[NarrationClip],
        assets: AssetLookup,
        total_duration: float,
        workspace: RenderWorkspace,
    ) -> StageOutput:
        """
        Render all narration onto one track of exactly ``total_duration``.

        Narration running past ``total_duration`` is cut off. With no clips the
        track is pure silence.

        Raises:
            MissingAssetError: If a clip's source_id has no asset
            RenderStageError: If FFmpeg fails
        """
        if not clips:
            logger.info("[NARRATION] No narration clips, rendering silence")
            return await self.render_silence(total_duration, workspace, STAGE_NARRATION, "narration.mp3")

        ordered = sorted(clips, key=lambda c: c.start_time)
        sources_dir = workspace.stage_dir(STAGE_NARRATION) / "sources"
        input_paths = []
        for clip in ordered:
            asset = assets.get(clip.source_id)
            if asset is None:
                raise MissingAssetError(clip.source_id, clip_id=clip.id, stage=STAGE_NARRATION)
            input_paths.append(await self.materializer.materialize(clip.source_id, asset, sources_dir))

        for clip in ordered:
            if clip.start_time >= total_duration:
                logger.warning(
                    f"[NARRATION] Clip {clip.id} starts at {clip.start_time:.2f}s, "
                    f"after the end of the track ({total_duration:.2f}s); it will be silent"
                )

        output_path = workspace.path(STAGE_NARRATION, "narration.mp3")
        cmd = self.build_narration_command(ordered, input_paths, total_duration, output_path)
        logger.info(f"[NARRATION] Mixing {len(ordered)} clips into {total_duration:.2f}s track")
        await self.runner.run(cmd, STAGE_NARRATION, timeout_s=self.settings.narration_timeout_s)
        return StageOutput(path=output_path, duration=total_duration, byte_size=output_path.stat().st_size)

    async def render_music_track(
        self,
        music_clips: Sequence[MusicClip],
        assets: AssetLookup,
        narration_clips: Sequence[NarrationClip],
        ducking: DuckingSettings,
        total_duration: float,
        workspace: RenderWorkspace,
    ) -> StageOutput:
        """
        Render the music bed with ducking under narration.

        Disabled ducking and an empty narration list both go through the same
        command with a constant ``normal_volume`` expression.

        Raises:
            MissingAssetError: If a music clip's source_id has no asset
            RenderStageError: If FFmpeg fails
        """
        if not music_clips:
            logger.info("[MUSIC] No music clips, rendering silence")
            return await self.render_silence(total_duration, workspace, STAGE_MUSIC, "music.mp3")

        ordered = sorted(music_clips, key=lambda c: c.start_time)
        sources_dir = workspace.stage_dir(STAGE_MUSIC) / "sources"
        input_paths = []
        for clip in ordered:
            asset = assets.get(clip.source_id)
            if asset is None:
                raise MissingAssetError(clip.source_id, clip_id=clip.id, stage=STAGE_MUSIC)
            input_paths.append(await self.materializer.materialize(clip.source_id, asset, sources_dir))

        automation = compile_ducking(narration_clips, ducking, lookahead=self.settings.ducking_lookahead_s)
        output_path = workspace.path(STAGE_MUSIC, "music.mp3")
        cmd = self.build_music_command(ordered, input_paths, automation, total_duration, output_path)
        logger.info(
            f"[MUSIC] Rendering {len(ordered)} music clips, "
            f"{len(automation.windows)} ducking windows, {total_duration:.2f}s"
        )
        await self.runner.run(cmd, STAGE_MUSIC, timeout_s=self.settings.music_timeout_s)
        return StageOutput(path=output_path, duration=total_duration, byte_size=output_path.stat().st_size)
