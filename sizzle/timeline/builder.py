"""Build and update timelines from an authored script.

Every function here is a pure transform: the input Timeline is never touched
and a new Timeline is returned.
"""

import logging
import math
from typing import Sequence

from sizzle.config import get_settings
from sizzle.exceptions import ClipNotFoundError, InvalidTimelineError
from sizzle.schemas.script import MusicBrief, NarrationSegment, Shot
from sizzle.schemas.timeline import (
    BaseClip,
    MusicClip,
    NarrationClip,
    Timeline,
    Track,
    VideoClip,
)

logger = logging.getLogger(__name__)

VIDEO_TRACK_ID = "video-track"
AUDIO_TRACK_ID = "audio-track"

MIN_CLIP_DURATION = 0.1


def video_clip_id(shot_id: str) -> str:
    return f"video-{shot_id}"


def narration_clip_id(segment_id: str) -> str:
    return f"narration-{segment_id}"


def music_clip_id(brief_id: str) -> str:
    return f"music-{brief_id}"


def shot_duration(shot: Shot, cinematic_duration: float | None = None) -> float:
    """Rendered length of a shot on the video track."""
    if shot.shot_type == "extracted":
        return shot.end_time - shot.start_time
    if cinematic_duration is None:
        cinematic_duration = get_settings().cinematic_shot_duration_s
    return cinematic_duration


def build_timeline(
    shots: Sequence[Shot],
    narration_segments: Sequence[NarrationSegment],
    music_brief: MusicBrief | None = None,
) -> Timeline:
    """
    Convert an authored script into a Timeline.

    Shots are laid end to end from t=0. Narration keeps the absolute timing
    written in the script. A music brief becomes a placeholder clip at t=0
    whose duration is corrected once the real asset exists.
    """
    cinematic_duration = get_settings().cinematic_shot_duration_s

    video_clips: list[VideoClip] = []
    cursor = 0.0
    for shot in shots:
        duration = shot_duration(shot, cinematic_duration)
        trim = {}
        if shot.shot_type == "extracted":
            trim = {"trim_start": shot.start_time, "trim_end": shot.end_time}
        video_clips.append(
            VideoClip(
                id=video_clip_id(shot.id),
                shot_id=shot.id,
                start_time=cursor,
                duration=duration,
                **trim,
            )
        )
        cursor += duration

    audio_clips: list[BaseClip] = [
        NarrationClip(
            id=narration_clip_id(segment.id),
            source_id=segment.id,
            text=segment.text,
            start_time=segment.start_time,
            duration=segment.end_time - segment.start_time,
        )
        for segment in narration_segments
    ]

    if music_brief is not None:
        music_duration = music_brief.duration or cursor
        if music_duration > 0:
            audio_clips.append(
                MusicClip(
                    id=music_clip_id(music_brief.id),
                    source_id=music_brief.id,
                    start_time=0.0,
                    duration=music_duration,
                )
            )
        else:
            logger.warning(f"[TIMELINE] Music brief {music_brief.id} has no usable duration, skipped")

    tracks: list[Track] = []
    if video_clips:
        tracks.append(Track(id=VIDEO_TRACK_ID, kind="video", clips=tuple(video_clips)))
    if audio_clips:
        tracks.append(Track(id=AUDIO_TRACK_ID, kind="audio", clips=tuple(audio_clips)))

    timeline = Timeline(tracks=tuple(tracks))
    logger.info(
        f"[TIMELINE] Built timeline: {len(video_clips)} shots, "
        f"{len(audio_clips)} audio clips, total {timeline.total_duration:.2f}s"
    )
    return timeline


def _replace_clips(timeline: Timeline, clip_ids: set[str], **updates) -> Timeline:
    """Return a new Timeline with ``updates`` applied to every clip in ``clip_ids``."""
    tracks = []
    for track in timeline.tracks:
        clips = tuple(
            # Round-trip through validation so the update obeys the clip invariants
            clip.model_validate({**clip.model_dump(), **updates}) if clip.id in clip_ids else clip
            for clip in track.clips
        )
        tracks.append(track.model_copy(update={"clips": clips}))
    return Timeline(tracks=tuple(tracks))


def _require_clip(timeline: Timeline, clip_id: str) -> BaseClip:
    clip = timeline.find_clip(clip_id)
    if clip is None:
        raise ClipNotFoundError(clip_id)
    return clip


def _finite(value: float, field: str, clip_id: str) -> float:
    if not math.isfinite(value):
        raise InvalidTimelineError(f"{field} must be a finite number, got {value}", clip_id=clip_id, field=field)
    return value


def update_clip_duration(timeline: Timeline, clip_id: str, duration: float) -> Timeline:
    """Set a clip's duration (never below 0.1s)."""
    _require_clip(timeline, clip_id)
    duration = _finite(duration, "duration", clip_id)
    return _replace_clips(timeline, {clip_id}, duration=max(MIN_CLIP_DURATION, duration))


def update_clip_position(timeline: Timeline, clip_id: str, start_time: float) -> Timeline:
    """Move a clip to a new absolute start time (never before 0)."""
    _require_clip(timeline, clip_id)
    start_time = _finite(start_time, "start_time", clip_id)
    return _replace_clips(timeline, {clip_id}, start_time=max(0.0, start_time))


def update_narration_duration(
    timeline: Timeline, narration_id: str, actual_duration: float
) -> Timeline:
    """Correct the duration of narration clips once their speech asset is rendered.

    ``narration_id`` is the narration source id, not the clip id.
    """
    clip_ids = {clip.id for clip in timeline.narration_clips() if clip.source_id == narration_id}
    if not clip_ids:
        raise ClipNotFoundError(narration_id)
    duration = _finite(actual_duration, "duration", min(clip_ids))
    return _replace_clips(timeline, clip_ids, duration=max(MIN_CLIP_DURATION, duration))


def attach_music_asset(
    timeline: Timeline,
    clip_id: str,
    duration: float,
    start_time: float = 0.0,
    source_id: str | None = None,
) -> Timeline:
    """Replace a music placeholder's timing with the real asset's, keeping the clip id."""
    clip = _require_clip(timeline, clip_id)
    if not isinstance(clip, MusicClip):
        raise ClipNotFoundError(clip_id)
    updates = {
        "duration": max(MIN_CLIP_DURATION, _finite(duration, "duration", clip_id)),
        "start_time": max(0.0, _finite(start_time, "start_time", clip_id)),
    }
    if source_id is not None:
        updates["source_id"] = source_id
    return _replace_clips(timeline, {clip_id}, **updates)
