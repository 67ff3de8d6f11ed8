"""
Video clip normalization and concatenation.

Generated clips arrive with whatever resolution, frame rate and codec the
provider produced. Each one is re-encoded to the canonical format first, so
the concat demuxer can join them with a plain stream copy.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Callable, Sequence

from PIL import Image, UnidentifiedImageError

from sizzle.config import Settings, get_settings
from sizzle.exceptions import InvalidTimelineError, MissingAssetError, RenderStageError
from sizzle.render.assets import AssetLookup, AssetMaterializer
from sizzle.render.runner import FFmpegRunner
from sizzle.render.stage import STAGE_STITCH, StageOutput
from sizzle.render.workspace import RenderWorkspace
from sizzle.schemas.timeline import VideoClip
from sizzle.utils.media_info import MediaInfo, get_media_info

logger = logging.getLogger(__name__)

OVERLAP_TOLERANCE = 0.001


def escape_concat_path(path: str | Path) -> str:
    """Quote a path for an FFmpeg concat list line."""
    escaped = str(path).replace("'", "'\\''")
    return f"file '{escaped}'"


def prepare_still(source: Path, target: Path) -> Path:
    """Re-save a still as an RGB PNG (drops alpha, palettes and odd JPEG modes)."""
    try:
        with Image.open(source) as img:
            img.convert("RGB").save(target, "PNG")
    except (UnidentifiedImageError, OSError) as e:
        raise RenderStageError(f"Unreadable still image {source.name}: {e}", stage=STAGE_STITCH) from e
    return target


class VideoStitcher:
    """Normalizes video clips to one format and concatenates them."""

    def __init__(
        self,
        runner: FFmpegRunner,
        materializer: AssetMaterializer,
        settings: Settings | None = None,
        media_info: Callable[[str], MediaInfo] = get_media_info,
    ):
        self.runner = runner
        self.materializer = materializer
        self.settings = settings or get_settings()
        self.media_info = media_info

    @property
    def normalize_filter(self) -> str:
        s = self.settings
        w, h = s.render_output_width, s.render_output_height
        return (
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:{s.render_pad_color},"
            f"fps={s.render_fps},setsar=1,format=yuv420p"
        )

    def _encode_args(self, duration: float, output_path: Path) -> list[str]:
        s = self.settings
        return [
            "-t", f"{duration:.3f}",
            "-an",
            "-c:v", s.render_video_codec,
            "-preset", s.render_video_preset,
            "-crf", str(s.render_video_crf),
            "-pix_fmt", "yuv420p",
            "-r", str(s.render_fps),
            str(output_path),
        ]

    def build_normalize_command(
        self,
        clip: VideoClip,
        source_path: Path,
        output_path: Path,
        is_still: bool = False,
    ) -> list[str]:
        """Build the FFmpeg command normalizing one clip without executing it.

        The output lasts exactly ``clip.duration``: a source (or trim window)
        that is too short holds its last frame, a still is looped. Reading
        stops at the end of the trim window.
        """
        cmd = [self.settings.ffmpeg_path, "-y"]

        if is_still:
            cmd += ["-loop", "1", "-framerate", str(self.settings.render_fps)]
            vf = self.normalize_filter
        else:
            window = clip.source_window
            if window is not None:
                start, end = window
                cmd += ["-ss", f"{start:.3f}", "-t", f"{end - start:.3f}"]
            vf = f"{self.normalize_filter},tpad=stop_mode=clone:stop_duration={clip.duration:.3f}"

        cmd += ["-i", str(source_path), "-vf", vf]
        return cmd + self._encode_args(clip.duration, output_path)

    def build_concat_command(self, list_path: Path, output_path: Path) -> list[str]:
        return [
            self.settings.ffmpeg_path,
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_path),
            "-c", "copy",
            "-movflags", "+faststart",
            str(output_path),
        ]

    async def _inspect_source(self, clip: VideoClip, source: Path) -> None:
        """Reject a source without video (or trimmed past its end), note a short one."""
        info = await asyncio.to_thread(self.media_info, str(source))
        if not info.has_video:
            raise RenderStageError(f"Shot {clip.shot_id} has no video stream", stage=STAGE_STITCH, clip_id=clip.id)
        if info.duration is None:
            return

        window = clip.source_window
        start, end = window if window is not None else (0.0, info.duration)
        if start >= info.duration:
            raise InvalidTimelineError(
                f"Clip {clip.id} starts at {start:.2f}s but shot {clip.shot_id} is only {info.duration:.2f}s long",
                clip_id=clip.id,
                field="trim_start",
            )
        available = min(end, info.duration) - start
        if available < clip.duration - OVERLAP_TOLERANCE:
            logger.info(
                f"[STITCH] Clip {clip.id} runs {clip.duration:.2f}s but shot {clip.shot_id} "
                f"provides {available:.2f}s; holding the last frame"
            )

    async def stitch(
        self,
        clips: Sequence[VideoClip],
        assets: AssetLookup,
        workspace: RenderWorkspace,
    ) -> StageOutput:
        """
        Normalize and concatenate video clips in start-time order.

        Returns:
            StageOutput whose duration is the sum of the clip durations

        Raises:
            InvalidTimelineError: If there are no clips or a trim starts past the end of its shot
            MissingAssetError: If a clip's shot has neither video nor still
            RenderStageError: If a source has no video stream or FFmpeg fails
        """
        if not clips:
            raise InvalidTimelineError("Nothing to stitch: timeline has no video clips")

        ordered = sorted(clips, key=lambda c: c.start_time)
        for prev, current in zip(ordered, ordered[1:]):
            if current.start_time < prev.end_time - OVERLAP_TOLERANCE:
                logger.warning(
                    f"[STITCH] Clip {current.id} overlaps {prev.id}; clips are concatenated "
                    f"back to back and the overlap is not preserved"
                )

        stage_dir = workspace.stage_dir(STAGE_STITCH)
        sources_dir = stage_dir / "sources"
        logger.info(f"[STITCH] Normalizing {len(ordered)} clips")

        normalized: list[Path] = []
        for index, clip in enumerate(ordered):
            asset = assets.get(clip.shot_id)
            if asset is None:
                raise MissingAssetError(clip.shot_id, clip_id=clip.id, stage=STAGE_STITCH)

            source = await self.materializer.materialize(clip.shot_id, asset, sources_dir)
            is_still = asset.media_type == "image"
            output_path = workspace.path(STAGE_STITCH, f"clip_{index:03d}.mp4")
            try:
                if is_still:
                    still_path = workspace.path(STAGE_STITCH, f"still_{index:03d}.png")
                    source = await asyncio.to_thread(prepare_still, source, still_path)
                else:
                    await self._inspect_source(clip, source)
                cmd = self.build_normalize_command(clip, source, output_path, is_still=is_still)
                await self.runner.run(cmd, STAGE_STITCH, timeout_s=self.settings.stitch_timeout_s)
            except RenderStageError as e:
                if e.location is not None and e.location.clip_id is None:
                    e.location = e.location.model_copy(update={"clip_id": clip.id})
                raise
            normalized.append(output_path)

        output_path = workspace.path(STAGE_STITCH, "stitched.mp4")
        if len(normalized) == 1:
            shutil.copy2(normalized[0], output_path)
        else:
            list_path = workspace.path(STAGE_STITCH, "concat_list.txt")
            list_path.write_text("".join(f"{escape_concat_path(p)}\n" for p in normalized))
            await self.runner.run(
                self.build_concat_command(list_path, output_path),
                STAGE_STITCH,
                timeout_s=self.settings.stitch_timeout_s,
            )

        duration = sum(clip.duration for clip in ordered)
        logger.info(f"[STITCH] Stitched {len(ordered)} clips, {duration:.2f}s")
        return StageOutput(path=output_path, duration=duration, byte_size=output_path.stat().st_size)
