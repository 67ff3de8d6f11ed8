"""
Tests for the render orchestrator.

Test cases:
1. Successful export returns bytes or copies to an output path
2. Workspace is removed on success and on failure
3. Missing assets fail pre-flight before any stage runs
4. Shot, narration and music ids resolve in their own lookups
5. Stage failures and timeouts carry the stage name
6. Concurrent mode cancels the remaining stages on failure
7. Cancellation and progress reporting
8. Repeated exports of the same input are identical
9. End-to-end render (requires ffmpeg)
"""

import asyncio
from dataclasses import replace
from pathlib import Path

import pytest

from sizzle.config import Settings
from sizzle.exceptions import (
    ExportCancelledError,
    InvalidTimelineError,
    MissingAssetError,
    RenderStageError,
    StageTimeoutError,
)
from sizzle.render.assets import ExportAssets, InMemoryAssetLookup, MediaAsset, ShotAssetLookup
from sizzle.render.pipeline import RenderPipeline, stage_budget
from sizzle.schemas.render import DuckingSettings
from sizzle.schemas.timeline import MusicClip, NarrationClip, SoundClip, Timeline, Track, VideoClip
from sizzle.utils.media_info import get_media_info


@pytest.fixture
def settings(temp_output_dir) -> Settings:
    work_dir = temp_output_dir / "work"
    work_dir.mkdir()
    return Settings(render_temp_dir=str(work_dir))


@pytest.fixture
def pipeline(fake_transcoder, settings) -> RenderPipeline:
    return RenderPipeline(transcoder=fake_transcoder, settings=settings)


def leftover_workspaces(settings: Settings) -> list[Path]:
    return list(Path(settings.render_temp_dir).iterdir())


class TestExport:
    """Happy-path exports."""

    @pytest.mark.asyncio
    async def test_returns_bytes(self, pipeline, fake_transcoder, sample_timeline, sample_assets):
        result = await pipeline.export(sample_timeline, sample_assets, request_id="req-1")

        assert fake_transcoder.calls == ["stitch", "narration", "music", "mux"]
        assert result.request_id == "req-1"
        assert result.data == b"mux:10.000"
        assert result.output_path is None
        assert result.duration == 10.0
        assert result.byte_size == len(result.data)
        assert set(result.stage_timings_ms) == {"stitch", "narration", "music", "mux"}

    @pytest.mark.asyncio
    async def test_copies_to_output_path(self, pipeline, sample_timeline, sample_assets, temp_output_dir):
        target = temp_output_dir / "out" / "reel.mp4"

        result = await pipeline.export(sample_timeline, sample_assets, output_path=target)

        assert result.output_path == target
        assert result.data is None
        assert target.read_bytes() == b"mux:10.000"
        assert result.to_dict()["output_path"] == str(target)

    @pytest.mark.asyncio
    async def test_music_stage_gets_narration_and_ducking(
        self, pipeline, fake_transcoder, sample_timeline, sample_assets
    ):
        ducking = DuckingSettings(normal_volume=0.4, ducked_volume=0.1)
        await pipeline.export(sample_timeline, sample_assets, ducking=ducking)

        assert [c.id for c in fake_transcoder.music_args["music_clips"]] == ["music-bgm"]
        assert [c.id for c in fake_transcoder.music_args["narration_clips"]] == ["narration-n1"]
        assert fake_transcoder.music_args["ducking"] is ducking

    @pytest.mark.asyncio
    async def test_default_ducking_from_settings(self, fake_transcoder, sample_timeline, sample_assets, settings):
        custom = settings.model_copy(update={"ducking_enabled": False, "ducking_normal_volume": 0.5})
        pipeline = RenderPipeline(transcoder=fake_transcoder, settings=custom)
        await pipeline.export(sample_timeline, sample_assets, output_path=None)

        ducking = fake_transcoder.music_args["ducking"]
        assert (ducking.enabled, ducking.normal_volume) == (False, 0.5)

    @pytest.mark.asyncio
    async def test_workspace_removed_after_success(
        self, pipeline, fake_transcoder, sample_timeline, sample_assets, settings
    ):
        await pipeline.export(sample_timeline, sample_assets)

        assert not fake_transcoder.workspace_roots[0].exists()
        assert leftover_workspaces(settings) == []

    @pytest.mark.asyncio
    async def test_progress_reported(self, pipeline, sample_timeline, sample_assets):
        updates = []
        pipeline.set_progress_callback(lambda percent, stage: updates.append(percent))

        await pipeline.export(sample_timeline, sample_assets)

        assert updates[0] == 5
        assert updates[-1] == 100
        assert updates == sorted(updates)

    @pytest.mark.asyncio
    async def test_sound_clips_are_ignored(self, pipeline, fake_transcoder, sample_timeline, sample_assets):
        audio = sample_timeline.audio_track
        timeline = Timeline(
            tracks=(
                sample_timeline.video_track,
                audio.model_copy(
                    update={"clips": (*audio.clips, SoundClip(id="sfx", source_id="whoosh", start_time=1, duration=1))}
                ),
            )
        )

        result = await pipeline.export(timeline, sample_assets)
        assert result.duration == 10.0


class TestPreflight:
    """Failures caught before any stage runs."""

    @pytest.mark.asyncio
    async def test_missing_narration_asset(self, pipeline, fake_transcoder, sample_timeline, sample_assets):
        assets = replace(sample_assets, narration=InMemoryAssetLookup())

        with pytest.raises(MissingAssetError) as exc_info:
            await pipeline.export(sample_timeline, assets)

        location = exc_info.value.location
        assert (location.stage, location.clip_id, location.asset_id) == ("preflight", "narration-n1", "n1")
        assert fake_transcoder.calls == []

    @pytest.mark.asyncio
    async def test_missing_shot_uses_still_fallback(self, pipeline, fake_transcoder, sample_timeline, sample_assets):
        assets = replace(
            sample_assets,
            shots=ShotAssetLookup(
                videos={"s1": MediaAsset(media_type="video", data=b"1")},
                stills={"s2": MediaAsset(media_type="image", data=b"png")},
            ),
        )

        await pipeline.export(sample_timeline, assets)
        assert fake_transcoder.calls[0] == "stitch"

    @pytest.mark.asyncio
    async def test_no_video_clips(self, pipeline, fake_transcoder, sample_assets):
        timeline = Timeline(
            tracks=(
                Track(
                    id="audio-track",
                    kind="audio",
                    clips=(NarrationClip(id="n", source_id="n1", start_time=0, duration=2),),
                ),
            )
        )

        with pytest.raises(InvalidTimelineError) as exc_info:
            await pipeline.export(timeline, sample_assets)

        assert exc_info.value.stage == "preflight"
        assert fake_transcoder.calls == []


class TestAssetNamespaces:
    """Shot ids, narration source ids and music source ids never mix."""

    @pytest.fixture
    def shared_id_timeline(self) -> Timeline:
        return Timeline(
            tracks=(
                Track(
                    id="video-track",
                    kind="video",
                    clips=(VideoClip(id="video-1", shot_id="1", start_time=0.0, duration=4.0),),
                ),
                Track(
                    id="audio-track",
                    kind="audio",
                    clips=(
                        NarrationClip(id="narration-1", source_id="1", start_time=1.0, duration=2.0),
                        MusicClip(id="music-1", source_id="1", start_time=0.0, duration=4.0),
                    ),
                ),
            )
        )

    @pytest.mark.asyncio
    async def test_same_id_resolves_per_stage(self, pipeline, fake_transcoder, shared_id_timeline):
        assets = ExportAssets(
            shots=ShotAssetLookup(videos={"1": MediaAsset(media_type="video", data=b"video")}),
            narration=InMemoryAssetLookup({"1": MediaAsset(media_type="audio", data=b"speech")}),
            music=InMemoryAssetLookup({"1": MediaAsset(media_type="audio", data=b"music")}),
        )

        await pipeline.export(shared_id_timeline, assets)

        assert fake_transcoder.assets["stitch"].get("1").data == b"video"
        assert fake_transcoder.assets["narration"].get("1").data == b"speech"
        assert fake_transcoder.assets["music"].get("1").data == b"music"

    @pytest.mark.asyncio
    async def test_shot_does_not_stand_in_for_narration(self, pipeline, fake_transcoder, shared_id_timeline):
        assets = ExportAssets(
            shots=ShotAssetLookup(videos={"1": MediaAsset(media_type="video", data=b"video")}),
            narration=InMemoryAssetLookup(),
            music=InMemoryAssetLookup({"1": MediaAsset(media_type="audio", data=b"music")}),
        )

        with pytest.raises(MissingAssetError) as exc_info:
            await pipeline.export(shared_id_timeline, assets)

        assert (exc_info.value.location.clip_id, exc_info.value.location.asset_id) == ("narration-1", "1")
        assert fake_transcoder.calls == []

    @pytest.mark.asyncio
    async def test_narration_does_not_stand_in_for_music(self, pipeline, fake_transcoder, shared_id_timeline):
        assets = ExportAssets(
            shots=ShotAssetLookup(videos={"1": MediaAsset(media_type="video", data=b"video")}),
            narration=InMemoryAssetLookup({"1": MediaAsset(media_type="audio", data=b"speech")}),
            music=InMemoryAssetLookup(),
        )

        with pytest.raises(MissingAssetError) as exc_info:
            await pipeline.export(shared_id_timeline, assets)

        assert exc_info.value.location.clip_id == "music-1"


class TestRepeatedExports:
    """The same timeline and assets always give the same deliverable."""

    @pytest.mark.asyncio
    async def test_two_exports_are_identical(self, pipeline, fake_transcoder, sample_timeline, sample_assets):
        first = await pipeline.export(sample_timeline, sample_assets)
        second = await pipeline.export(sample_timeline, sample_assets)

        assert first.data == second.data
        assert (first.duration, first.byte_size) == (second.duration, second.byte_size)
        assert first.request_id != second.request_id
        assert fake_transcoder.calls == ["stitch", "narration", "music", "mux"] * 2

    @pytest.mark.asyncio
    async def test_repeat_export_leaves_input_untouched(self, pipeline, sample_timeline, sample_assets):
        snapshot = sample_timeline.model_dump()

        await pipeline.export(sample_timeline, sample_assets)
        await pipeline.export(sample_timeline, sample_assets)

        assert sample_timeline.model_dump() == snapshot
        assert sample_assets.narration.get("n1").data == b"speech"


class TestStageFailures:
    """Failures inside a stage."""

    @pytest.mark.asyncio
    async def test_failure_tagged_with_stage(self, pipeline, fake_transcoder, sample_timeline, sample_assets, settings):
        fake_transcoder.failures["music"] = RenderStageError("ffmpeg exited with code 1", returncode=1)

        with pytest.raises(RenderStageError) as exc_info:
            await pipeline.export(sample_timeline, sample_assets)

        assert exc_info.value.stage == "music"
        assert "mux" not in fake_transcoder.calls
        assert leftover_workspaces(settings) == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_wrapped(self, pipeline, fake_transcoder, sample_timeline, sample_assets):
        fake_transcoder.failures["stitch"] = ValueError("bad frame")

        with pytest.raises(RenderStageError, match="Unexpected error: bad frame") as exc_info:
            await pipeline.export(sample_timeline, sample_assets)

        assert exc_info.value.stage == "stitch"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_stage_timeout(self, fake_transcoder, sample_timeline, sample_assets, settings):
        tight = settings.model_copy(update={"narration_timeout_s": 0.1, "asset_fetch_timeout_s": 0.0})
        pipeline = RenderPipeline(transcoder=fake_transcoder, settings=tight)
        fake_transcoder.delays["narration"] = 5.0

        with pytest.raises(StageTimeoutError) as exc_info:
            await pipeline.export(sample_timeline, sample_assets)

        assert exc_info.value.stage == "narration"
        assert exc_info.value.to_error_info().code == "STAGE_TIMEOUT"
        assert fake_transcoder.cancelled == ["narration"]

    def test_stage_budget(self):
        settings = Settings(stitch_timeout_s=100, asset_fetch_timeout_s=20)
        assert stage_budget(settings, settings.stitch_timeout_s, commands=4) == 420


class TestConcurrentStages:
    """render_parallel_stages runs stitch, narration and music together."""

    @pytest.fixture
    def parallel(self, fake_transcoder, settings) -> RenderPipeline:
        return RenderPipeline(
            transcoder=fake_transcoder,
            settings=settings.model_copy(update={"render_parallel_stages": True}),
        )

    @pytest.mark.asyncio
    async def test_success(self, parallel, fake_transcoder, sample_timeline, sample_assets):
        result = await parallel.export(sample_timeline, sample_assets)

        assert sorted(fake_transcoder.calls[:3]) == ["music", "narration", "stitch"]
        assert fake_transcoder.calls[3] == "mux"
        assert result.data == b"mux:10.000"

    @pytest.mark.asyncio
    async def test_failure_cancels_other_stages(
        self, parallel, fake_transcoder, sample_timeline, sample_assets, settings
    ):
        fake_transcoder.delays["stitch"] = 5.0
        fake_transcoder.delays["music"] = 5.0
        fake_transcoder.failures["narration"] = RenderStageError("ffmpeg exited with code 1", returncode=1)

        with pytest.raises(RenderStageError) as exc_info:
            await parallel.export(sample_timeline, sample_assets)

        assert exc_info.value.stage == "narration"
        assert sorted(fake_transcoder.cancelled) == ["music", "stitch"]
        assert "mux" not in fake_transcoder.calls
        assert leftover_workspaces(settings) == []


class TestCancellation:
    """cancel_check aborts between stages."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, pipeline, fake_transcoder, sample_timeline, sample_assets):
        with pytest.raises(ExportCancelledError) as exc_info:
            await pipeline.export(sample_timeline, sample_assets, cancel_check=lambda: True)

        assert exc_info.value.stage == "stitch"
        assert fake_transcoder.calls == []

    @pytest.mark.asyncio
    async def test_async_cancel_check_between_stages(self, pipeline, fake_transcoder, sample_timeline, sample_assets):
        async def cancel_after_narration():
            return "narration" in fake_transcoder.calls

        with pytest.raises(ExportCancelledError) as exc_info:
            await pipeline.export(sample_timeline, sample_assets, cancel_check=cancel_after_narration)

        assert exc_info.value.stage == "music"
        assert fake_transcoder.calls == ["stitch", "narration"]

    @pytest.mark.asyncio
    async def test_task_cancellation_cleans_up(self, pipeline, fake_transcoder, sample_timeline, sample_assets, settings):
        fake_transcoder.delays["stitch"] = 5.0
        task = asyncio.create_task(pipeline.export(sample_timeline, sample_assets))
        await asyncio.sleep(0.2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert fake_transcoder.cancelled == ["stitch"]
        assert leftover_workspaces(settings) == []


@pytest.mark.requires_ffmpeg
class TestEndToEnd:
    """Full render through FFmpeg."""

    @pytest.mark.asyncio
    async def test_sizzle_reel(self, make_video, make_still, make_tone, temp_output_dir):
        settings = Settings(render_output_width=640, render_output_height=360, render_fps=25)
        timeline = Timeline(
            tracks=(
                Track(
                    id="video-track",
                    kind="video",
                    clips=(
                        VideoClip(id="video-s1", shot_id="s1", start_time=0.0, duration=3.0),
                        VideoClip(id="video-s2", shot_id="s2", start_time=3.0, duration=2.0),
                    ),
                ),
                Track(
                    id="audio-track",
                    kind="audio",
                    clips=(NarrationClip(id="narration-n1", source_id="n1", start_time=1.0, duration=2.0),),
                ),
            )
        )
        tone = make_tone("line", 2.0).read_bytes()
        assets = ExportAssets(
            shots=ShotAssetLookup(
                videos={"s1": MediaAsset(media_type="video", data=make_video("s1", 3.0, 1280, 720).read_bytes())},
                stills={"s2": MediaAsset(media_type="image", data=make_still("s2").read_bytes(), mime_type="image/png")},
            ),
            narration=InMemoryAssetLookup({"n1": MediaAsset(media_type="audio", data=tone, mime_type="audio/mpeg")}),
            music=InMemoryAssetLookup(),
        )
        target = temp_output_dir / "reel.mp4"

        result = await RenderPipeline(settings=settings).export(timeline, assets, output_path=target)
        info = get_media_info(str(target))

        assert result.duration == pytest.approx(5.0, abs=0.15)
        assert info.has_video and info.has_audio
        assert (info.width, info.height) == (640, 360)
