"""Timeline data model.

A Timeline is an immutable snapshot: tracks of positioned clips. Mutations
(see ``sizzle.timeline.builder``) always return a new Timeline so a render
never sees a half-edited timeline.
"""

from typing import Annotated, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

Seconds = Annotated[float, Field(allow_inf_nan=False)]
NonNegativeSeconds = Annotated[float, Field(ge=0, allow_inf_nan=False)]

ClipType = Literal["video", "audio"]
AudioType = Literal["narration", "music", "sfx", "ambient"]


class BaseClip(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    start_time: Seconds = Field(ge=0)  # absolute timeline position (seconds)
    duration: Seconds = Field(gt=0)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class VideoClip(BaseClip):
    """A shot placed on the video track.

    With ``trim_start``/``trim_end`` the clip is a window into a longer
    source asset rather than a rendered asset of its own.
    """

    type: Literal["video"] = "video"
    shot_id: str
    trim_start: NonNegativeSeconds | None = None
    trim_end: NonNegativeSeconds | None = None

    @model_validator(mode="after")
    def _check_trim_window(self) -> "VideoClip":
        if self.trim_start is not None and self.trim_end is not None:
            if self.trim_end <= self.trim_start:
                raise ValueError(
                    f"trim_end ({self.trim_end}) must be greater than trim_start ({self.trim_start})"
                )
        return self

    @property
    def source_window(self) -> tuple[float, float] | None:
        """(start, end) inside the source asset, or None for whole-asset clips."""
        if self.trim_start is None:
            return None
        end = self.trim_end if self.trim_end is not None else self.trim_start + self.duration
        return self.trim_start, end


Volume = Annotated[float, Field(ge=0.0, le=1.0)]


class NarrationClip(BaseClip):
    type: Literal["audio"] = "audio"
    audio_type: Literal["narration"] = "narration"
    source_id: str
    text: str = ""
    volume: Volume | None = None


class MusicClip(BaseClip):
    type: Literal["audio"] = "audio"
    audio_type: Literal["music"] = "music"
    source_id: str
    volume: Volume | None = None
    fade_in: NonNegativeSeconds | None = None
    fade_out: NonNegativeSeconds | None = None


class SoundClip(BaseClip):
    """Sound effect or ambient bed."""

    type: Literal["audio"] = "audio"
    audio_type: Literal["sfx", "ambient"]
    source_id: str
    volume: Volume | None = None


AudioClip = Annotated[
    Union[NarrationClip, MusicClip, SoundClip],
    Field(discriminator="audio_type"),
]

TimelineClip = Annotated[Union[VideoClip, AudioClip], Field(discriminator="type")]


class Track(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: ClipType
    clips: tuple[TimelineClip, ...] = ()

    @model_validator(mode="after")
    def _check_clip_kinds(self) -> "Track":
        for clip in self.clips:
            if clip.type != self.kind:
                raise ValueError(
                    f"Clip {clip.id} of type '{clip.type}' cannot live on {self.kind} track {self.id}"
                )
        return self


class Timeline(BaseModel):
    model_config = ConfigDict(frozen=True)

    tracks: tuple[Track, ...] = ()

    @model_validator(mode="after")
    def _check_unique_clip_ids(self) -> "Timeline":
        seen: set[str] = set()
        for clip in self.all_clips():
            if clip.id in seen:
                raise ValueError(f"Duplicate clip id: {clip.id}")
            seen.add(clip.id)
        return self

    @computed_field
    @property
    def total_duration(self) -> float:
        """Latest end time over every clip on every track (0 for an empty timeline)."""
        return max((clip.end_time for clip in self.all_clips()), default=0.0)

    def all_clips(self) -> Iterator[BaseClip]:
        for track in self.tracks:
            yield from track.clips

    def find_clip(self, clip_id: str) -> BaseClip | None:
        for clip in self.all_clips():
            if clip.id == clip_id:
                return clip
        return None

    def _first_track(self, kind: ClipType) -> Track | None:
        return next((t for t in self.tracks if t.kind == kind), None)

    @property
    def video_track(self) -> Track | None:
        return self._first_track("video")

    @property
    def audio_track(self) -> Track | None:
        return self._first_track("audio")

    def video_clips(self) -> list[VideoClip]:
        clips = [c for c in self.all_clips() if isinstance(c, VideoClip)]
        return sorted(clips, key=lambda c: c.start_time)

    def narration_clips(self) -> list[NarrationClip]:
        clips = [c for c in self.all_clips() if isinstance(c, NarrationClip)]
        return sorted(clips, key=lambda c: c.start_time)

    def music_clips(self) -> list[MusicClip]:
        clips = [c for c in self.all_clips() if isinstance(c, MusicClip)]
        return sorted(clips, key=lambda c: c.start_time)
