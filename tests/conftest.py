"""
Pytest fixtures for sizzle render tests.

Tests that shell out to the real media tools are marked with
@pytest.mark.requires_ffmpeg and skipped when ffmpeg/ffprobe are not on PATH.
Run `pytest -m "not requires_ffmpeg"` to select the pure-logic tests only.
"""

import asyncio
import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from sizzle.render.assets import ExportAssets, InMemoryAssetLookup, MediaAsset, ShotAssetLookup
from sizzle.render.stage import StageOutput
from sizzle.schemas.timeline import MusicClip, NarrationClip, Timeline, Track, VideoClip

FFMPEG_AVAILABLE = shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring the ffmpeg/ffprobe executables"
    )


def pytest_collection_modifyitems(config, items):
    if FFMPEG_AVAILABLE:
        return
    skip = pytest.mark.skip(reason="ffmpeg/ffprobe not available on PATH")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="sizzle_test_") as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Timelines
# =============================================================================


@pytest.fixture
def sample_timeline() -> Timeline:
    """Two shots (4s + 6s), one narration line at 5s, music under everything."""
    return Timeline(
        tracks=(
            Track(
                id="video-track",
                kind="video",
                clips=(
                    VideoClip(id="video-s1", shot_id="s1", start_time=0.0, duration=4.0),
                    VideoClip(id="video-s2", shot_id="s2", start_time=4.0, duration=6.0),
                ),
            ),
            Track(
                id="audio-track",
                kind="audio",
                clips=(
                    NarrationClip(id="narration-n1", source_id="n1", text="Meet the team", start_time=5.0, duration=3.0),
                    MusicClip(id="music-bgm", source_id="bgm", start_time=0.0, duration=10.0),
                ),
            ),
        )
    )


@pytest.fixture
def sample_assets() -> ExportAssets:
    """Byte assets for every id referenced by ``sample_timeline``."""
    return ExportAssets(
        shots=ShotAssetLookup(
            videos={
                "s1": MediaAsset(media_type="video", data=b"video-1", mime_type="video/mp4"),
                "s2": MediaAsset(media_type="video", data=b"video-2", mime_type="video/mp4"),
            }
        ),
        narration=InMemoryAssetLookup({"n1": MediaAsset(media_type="audio", data=b"speech", mime_type="audio/mpeg")}),
        music=InMemoryAssetLookup({"bgm": MediaAsset(media_type="audio", data=b"music", mime_type="audio/mpeg")}),
    )


# =============================================================================
# Fake transcoder
# =============================================================================


class FakeTranscoder:
    """Transcoder stand-in that writes placeholder files into the workspace.

    ``delays`` makes a stage sleep, ``failures`` makes it raise. Cancelled
    stages are recorded in ``cancelled``; the lookup each stage received is
    kept in ``assets``.
    """

    def __init__(self):
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.workspace_roots: list[Path] = []
        self.delays: dict[str, float] = {}
        self.failures: dict[str, Exception] = {}
        self.music_args: dict = {}
        self.assets: dict = {}

    async def _stage(self, stage: str, workspace, filename: str, duration: float) -> StageOutput:
        self.calls.append(stage)
        self.workspace_roots.append(workspace.root)
        if stage in self.delays:
            try:
                await asyncio.sleep(self.delays[stage])
            except asyncio.CancelledError:
                self.cancelled.append(stage)
                raise
        if stage in self.failures:
            raise self.failures[stage]
        path = workspace.path(stage, filename)
        path.write_bytes(f"{stage}:{duration:.3f}".encode())
        return StageOutput(path=path, duration=duration, byte_size=path.stat().st_size)

    async def stitch_video(self, clips, assets, workspace):
        self.assets["stitch"] = assets
        return await self._stage("stitch", workspace, "stitched.mp4", sum(c.duration for c in clips))

    async def render_narration(self, clips, assets, total_duration, workspace):
        self.assets["narration"] = assets
        return await self._stage("narration", workspace, "narration.mp3", total_duration)

    async def render_music(self, music_clips, assets, narration_clips, ducking, total_duration, workspace):
        self.assets["music"] = assets
        self.music_args = {"music_clips": list(music_clips), "narration_clips": list(narration_clips), "ducking": ducking}
        return await self._stage("music", workspace, "music.mp3", total_duration)

    async def mux(self, video_path, narration_path, music_path, workspace, duration=None):
        output = await self._stage("mux", workspace, "final.mp4", duration or 0.0)
        return output


@pytest.fixture
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()


# =============================================================================
# Generated media (ffmpeg)
# =============================================================================


def _run(cmd: list[str]) -> None:
    subprocess.run(cmd, capture_output=True, check=True)


@pytest.fixture
def make_video(temp_output_dir: Path):
    """Generate a silent test-pattern video: make_video(name, duration, width, height, fps)."""
    def _make(name: str, duration: float, width: int = 640, height: int = 480, fps: int = 25) -> Path:
        path = temp_output_dir / f"{name}.mp4"
        _run([
            "ffmpeg", "-y",
            "-f", "lavfi", "-i", f"testsrc=size={width}x{height}:rate={fps}:duration={duration}",
            "-c:v", "libx264", "-pix_fmt", "yuv420p",
            str(path),
        ])
        return path
    return _make


@pytest.fixture
def make_tone(temp_output_dir: Path):
    """Generate a sine tone: make_tone(name, duration, frequency)."""
    def _make(name: str, duration: float, frequency: int = 440) -> Path:
        path = temp_output_dir / f"{name}.mp3"
        _run([
            "ffmpeg", "-y",
            "-f", "lavfi", "-i", f"sine=frequency={frequency}:duration={duration}",
            "-c:a", "libmp3lame", "-ar", "44100",
            str(path),
        ])
        return path
    return _make


@pytest.fixture
def make_still(temp_output_dir: Path):
    """Write an RGBA PNG still with Pillow."""
    def _make(name: str, width: int = 800, height: int = 600) -> Path:
        path = temp_output_dir / f"{name}.png"
        Image.new("RGBA", (width, height), (200, 40, 40, 128)).save(path)
        return path
    return _make
