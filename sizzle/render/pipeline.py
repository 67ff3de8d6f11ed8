"""
Render orchestrator for sizzle reel exports.

This module sequences one export request:
1. Pre-flight: validate the timeline and resolve every referenced asset
2. Stitch the video track (normalize + concatenate)
3. Render the narration track
4. Render the ducked music track
5. Mux video, narration and music into the deliverable

Steps 2-4 have no data dependency on each other and run concurrently when
``render_parallel_stages`` is set. Every step has a wall-clock budget, all
intermediate files live in one request workspace, and the workspace is
removed whatever the outcome. Nothing is retried.
"""

import asyncio
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from sizzle.config import Settings, get_settings
from sizzle.exceptions import (
    ExportCancelledError,
    InvalidTimelineError,
    MissingAssetError,
    RenderStageError,
    SizzleError,
    StageTimeoutError,
)
from sizzle.render.assets import ExportAssets
from sizzle.render.stage import (
    STAGE_MUSIC,
    STAGE_MUX,
    STAGE_NARRATION,
    STAGE_PREFLIGHT,
    STAGE_STITCH,
    StageOutput,
)
from sizzle.render.transcoder import FFmpegTranscoder, Transcoder
from sizzle.render.workspace import RenderWorkspace
from sizzle.schemas.render import DuckingSettings
from sizzle.schemas.timeline import SoundClip, Timeline

logger = logging.getLogger(__name__)

DURATION_TOLERANCE = 0.05

SEQUENTIAL_STEPS = {
    STAGE_STITCH: (10, "Stitching video"),
    STAGE_NARRATION: (40, "Rendering narration"),
    STAGE_MUSIC: (60, "Rendering music"),
}


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass
class ExportResult:
    """Deliverable of a finished export.

    Exactly one of ``output_path`` (file copied out of the workspace) and
    ``data`` (file contents) is set.
    """

    request_id: str
    duration: float
    byte_size: int
    processing_time_ms: int
    output_path: Optional[Path] = None
    data: Optional[bytes] = None
    stage_timings_ms: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (without the media bytes)."""
        return {
            "request_id": self.request_id,
            "duration": self.duration,
            "byte_size": self.byte_size,
            "processing_time_ms": self.processing_time_ms,
            "output_path": str(self.output_path) if self.output_path else None,
            "stage_timings_ms": self.stage_timings_ms,
        }


ProgressCallback = Callable[[int, str], None]
CancelCheck = Callable[[], Any]


def stage_budget(settings: Settings, subprocess_timeout: float, commands: int = 1) -> float:
    """Wall-clock budget of a stage: its subprocesses plus asset downloads."""
    return subprocess_timeout * commands + settings.asset_fetch_timeout_s


async def run_stage(stage: str, coro: Awaitable[StageOutput], budget: float) -> StageOutput:
    """
    Await one stage within its budget and tag any failure with the stage name.

    Raises:
        StageTimeoutError: If the stage overran ``budget`` (the stage is cancelled)
        SizzleError: Whatever the stage raised, with ``location.stage`` filled in
        RenderStageError: For any other exception escaping the stage
    """
    logger.info(f"[{stage.upper()}] Starting (budget {budget:g}s)")
    try:
        return await asyncio.wait_for(coro, timeout=budget)
    except asyncio.TimeoutError:
        logger.error(f"[{stage.upper()}] Exceeded budget of {budget:g}s")
        raise StageTimeoutError(stage, budget) from None
    except SizzleError as e:
        raise e.with_stage(stage)
    except Exception as e:
        logger.exception(f"[{stage.upper()}] Unexpected error")
        raise RenderStageError(f"Unexpected error: {e}", stage=stage) from e


class RenderPipeline:
    """
    Runs one export: stitch, narration, music, mux.

    The pipeline holds no per-request state between exports, so one instance
    can serve concurrent requests; each export gets its own workspace.
    """

    def __init__(
        self,
        transcoder: Transcoder | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.transcoder = transcoder or FFmpegTranscoder(self.settings)
        self._progress_callback: ProgressCallback | None = None

    def set_progress_callback(self, callback: ProgressCallback | None) -> None:
        """Set callback for progress updates, called as ``callback(percent, stage)``."""
        self._progress_callback = callback

    def _update_progress(self, progress: int, stage: str) -> None:
        if self._progress_callback:
            self._progress_callback(progress, stage)

    async def export(
        self,
        timeline: Timeline,
        assets: ExportAssets,
        ducking: DuckingSettings | None = None,
        output_path: str | Path | None = None,
        cancel_check: CancelCheck | None = None,
        request_id: str | None = None,
    ) -> ExportResult:
        """
        Render ``timeline`` into the final deliverable.

        Args:
            timeline: Timeline snapshot to render
            assets: Shot, narration and music lookups, each keyed by its own ids
            ducking: Ducking parameters (defaults from settings)
            output_path: Where to copy the result; if omitted the bytes are
                returned in ``ExportResult.data``
            cancel_check: Optional sync or async callable returning True to abort
            request_id: Id used for the workspace and logs (generated if omitted)

        Raises:
            InvalidTimelineError: Timeline cannot be rendered
            MissingAssetError: A referenced id is missing from its lookup in ``assets``
            RenderStageError: A stage failed (``StageTimeoutError`` if over budget)
            ExportCancelledError: ``cancel_check`` returned True
        """
        request_id = request_id or uuid4().hex[:12]
        ducking = ducking or DuckingSettings.from_settings(self.settings)
        started = time.monotonic()
        timings: dict[str, int] = {}

        self._update_progress(5, "Preparing render")
        try:
            self._preflight(timeline, assets)
        except SizzleError as e:
            e.with_stage(STAGE_PREFLIGHT)
            logger.error(f"[EXPORT {request_id}] Pre-flight failed: {e}")
            raise

        total_duration = timeline.total_duration
        logger.info(
            f"[EXPORT {request_id}] Starting export: {len(timeline.video_clips())} video clips, "
            f"{len(timeline.narration_clips())} narration clips, "
            f"{len(timeline.music_clips())} music clips, total {total_duration:.2f}s"
        )

        workspace = RenderWorkspace(request_id, base_dir=self.settings.render_temp_dir or None)
        try:
            await self._check_cancelled(cancel_check, STAGE_STITCH)

            if self.settings.render_parallel_stages:
                video, narration, music = await self._render_tracks_concurrently(
                    timeline, assets, ducking, workspace, timings
                )
            else:
                video, narration, music = await self._render_tracks_sequentially(
                    timeline, assets, ducking, workspace, timings, cancel_check
                )

            if abs(video.duration - total_duration) > DURATION_TOLERANCE:
                logger.warning(
                    f"[EXPORT {request_id}] Video track is {video.duration:.2f}s but the timeline "
                    f"runs {total_duration:.2f}s; output is cut to the timeline length"
                )

            await self._check_cancelled(cancel_check, STAGE_MUX)
            self._update_progress(80, "Mixing final output")
            final = await self._run_stage(
                STAGE_MUX,
                self.transcoder.mux(video.path, narration.path, music.path, workspace, total_duration),
                self.settings.mux_timeout_s + self.settings.probe_timeout_s,
                timings,
            )

            self._update_progress(95, "Delivering")
            result = ExportResult(
                request_id=request_id,
                duration=final.duration,
                byte_size=final.byte_size,
                processing_time_ms=0,
                stage_timings_ms=timings,
            )
            if output_path is not None:
                target = Path(output_path)
                target.parent.mkdir(parents=True, exist_ok=True)
                await asyncio.to_thread(shutil.copy2, final.path, target)
                result.output_path = target
            else:
                result.data = await asyncio.to_thread(final.path.read_bytes)

            result.processing_time_ms = int((time.monotonic() - started) * 1000)
            self._update_progress(100, "Complete")
            logger.info(
                f"[EXPORT {request_id}] Completed in {result.processing_time_ms}ms: "
                f"{result.duration:.2f}s, {result.byte_size} bytes"
            )
            return result

        except ExportCancelledError:
            logger.info(f"[EXPORT {request_id}] Cancelled")
            raise
        except SizzleError as e:
            logger.error(f"[EXPORT {request_id}] Failed: {e}")
            raise
        finally:
            workspace.cleanup()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _track_jobs(
        self,
        timeline: Timeline,
        assets: ExportAssets,
        ducking: DuckingSettings,
        workspace: RenderWorkspace,
    ) -> list[tuple[str, Callable[[], Awaitable[StageOutput]], float]]:
        video_clips = timeline.video_clips()
        narration_clips = timeline.narration_clips()
        total = timeline.total_duration
        s = self.settings
        return [
            (
                STAGE_STITCH,
                lambda: self.transcoder.stitch_video(video_clips, assets.shots, workspace),
                stage_budget(s, s.stitch_timeout_s, len(video_clips) + 1),
            ),
            (
                STAGE_NARRATION,
                lambda: self.transcoder.render_narration(narration_clips, assets.narration, total, workspace),
                stage_budget(s, s.narration_timeout_s),
            ),
            (
                STAGE_MUSIC,
                lambda: self.transcoder.render_music(
                    timeline.music_clips(), assets.music, narration_clips, ducking, total, workspace
                ),
                stage_budget(s, s.music_timeout_s),
            ),
        ]

    async def _render_tracks_sequentially(self, timeline, assets, ducking, workspace, timings, cancel_check):
        outputs = []
        for stage, job, budget in self._track_jobs(timeline, assets, ducking, workspace):
            await self._check_cancelled(cancel_check, stage)
            self._update_progress(*SEQUENTIAL_STEPS[stage])
            outputs.append(await self._run_stage(stage, job(), budget, timings))
        return tuple(outputs)

    async def _render_tracks_concurrently(self, timeline, assets, ducking, workspace, timings):
        self._update_progress(10, "Rendering video and audio tracks")
        tasks = [
            asyncio.create_task(self._run_stage(stage, job(), budget, timings), name=stage)
            for stage, job, budget in self._track_jobs(timeline, assets, ducking, workspace)
        ]
        try:
            _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await self._cancel_tasks(tasks)
            raise

        failed = [t for t in tasks if t.done() and not t.cancelled() and t.exception() is not None]
        if failed:
            await self._cancel_tasks(pending)
            logger.error(f"[EXPORT] Stage {failed[0].get_name()} failed, cancelled {len(pending)} other stages")
            raise failed[0].exception()
        return tuple(t.result() for t in tasks)

    @staticmethod
    async def _cancel_tasks(tasks) -> None:
        for task in tasks:
            task.cancel()
        # Wait so cancelled subprocesses are killed and reaped before cleanup
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_stage(
        self,
        stage: str,
        coro: Awaitable[StageOutput],
        budget: float,
        timings: dict[str, int],
    ) -> StageOutput:
        started = time.monotonic()
        try:
            output = await run_stage(stage, coro, budget)
        finally:
            timings[stage] = int((time.monotonic() - started) * 1000)

        logger.info(
            f"[{stage.upper()}] Done in {timings[stage]}ms: {output.duration:.2f}s, {output.byte_size} bytes"
        )
        return output

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _preflight(self, timeline: Timeline, assets: ExportAssets) -> None:
        """Fail before any subprocess runs if the export cannot succeed."""
        video_clips = timeline.video_clips()
        if not video_clips:
            raise InvalidTimelineError("Timeline has no video clips", field="tracks")
        if timeline.total_duration <= 0:
            raise InvalidTimelineError("Timeline total duration must be greater than 0", field="tracks")

        for clip in video_clips:
            if assets.shots.get(clip.shot_id) is None:
                raise MissingAssetError(clip.shot_id, clip_id=clip.id)
        for lookup, clips in ((assets.narration, timeline.narration_clips()), (assets.music, timeline.music_clips())):
            for clip in clips:
                if lookup.get(clip.source_id) is None:
                    raise MissingAssetError(clip.source_id, clip_id=clip.id)

        ignored = [c.id for c in timeline.all_clips() if isinstance(c, SoundClip)]
        if ignored:
            logger.info(f"[EXPORT] Sound effect/ambient clips are not rendered: {', '.join(ignored)}")

    async def _check_cancelled(self, cancel_check: CancelCheck | None, stage: str) -> None:
        if cancel_check is None:
            return
        result = cancel_check()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            raise ExportCancelledError().with_stage(stage)
