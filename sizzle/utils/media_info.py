"""Media file information utilities using FFprobe.

The stitcher inspects every video source with ``get_media_info`` before
normalizing it. The other helpers serve tests and diagnostics.
"""

import json
import subprocess
from dataclasses import dataclass
from fractions import Fraction

from sizzle.config import get_settings
from sizzle.exceptions import RenderStageError, StageTimeoutError


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass
class MediaInfo:
    """Media file information."""

    duration: float | None = None  # seconds
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    has_video: bool = False
    has_audio: bool = False


def _run_ffprobe(file_path: str, *args: str) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=settings.probe_timeout_s)
    except subprocess.TimeoutExpired as e:
        raise StageTimeoutError("probe", settings.probe_timeout_s) from e
    if result.returncode != 0:
        raise RenderStageError(
            f"ffprobe failed for {file_path}",
            stage="probe",
            returncode=result.returncode,
            stderr=result.stderr,
        )

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RenderStageError(f"Unreadable ffprobe output for {file_path}: {e}", stage="probe")


def get_media_duration(file_path: str) -> float:
    """
    Get media file duration in seconds.

    Raises:
        RenderStageError: If ffprobe fails or duration not found
    """
    data = _run_ffprobe(file_path, "-show_format")
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise RenderStageError(f"Duration not found in: {file_path}", stage="probe")

    return float(format_info["duration"])


def get_video_dimensions(file_path: str) -> tuple[int, int]:
    """
    Get video width and height.

    Raises:
        RenderStageError: If ffprobe fails or video stream not found
    """
    data = _run_ffprobe(file_path, "-show_streams", "-select_streams", "v")

    streams = data.get("streams", [])
    if not streams:
        raise RenderStageError(f"No video stream found in: {file_path}", stage="probe")

    stream = streams[0]
    width = stream.get("width")
    height = stream.get("height")

    if width is None or height is None:
        raise RenderStageError(f"Video dimensions not found in: {file_path}", stage="probe")

    return width, height


def has_audio_track(file_path: str) -> bool:
    """Check if media file has an audio track."""
    try:
        data = _run_ffprobe(file_path, "-show_streams", "-select_streams", "a")
    except RenderStageError:
        return False
    return len(data.get("streams", [])) > 0


def _parse_frame_rate(value: str) -> float | None:
    try:
        rate = Fraction(value)
    except (ValueError, ZeroDivisionError):
        return None
    return float(rate) if rate > 0 else None


def get_media_info(file_path: str) -> MediaInfo:
    """
    Get complete media file information.

    Raises:
        RenderStageError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams")
    info = MediaInfo()

    format_info = data.get("format", {})
    if "duration" in format_info:
        info.duration = float(format_info["duration"])

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")
            info.fps = _parse_frame_rate(stream.get("r_frame_rate", "0/1"))

        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")
            info.sample_rate = int(stream.get("sample_rate", 0)) or None
            info.channels = stream.get("channels")

    return info
