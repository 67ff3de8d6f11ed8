"""Tests for the timeline data model."""

import math

import pytest
from pydantic import ValidationError

from sizzle.schemas.timeline import (
    MusicClip,
    NarrationClip,
    SoundClip,
    Timeline,
    Track,
    VideoClip,
)


class TestClipInvariants:
    """Construction-time validation of clips."""

    def test_end_time_is_derived(self):
        clip = VideoClip(id="v1", shot_id="s1", start_time=2.5, duration=4.0)
        assert clip.end_time == 6.5
        assert "end_time" not in clip.model_dump()

    @pytest.mark.parametrize("start_time", [-0.1, math.nan, math.inf])
    def test_rejects_bad_start_time(self, start_time):
        with pytest.raises(ValidationError):
            VideoClip(id="v1", shot_id="s1", start_time=start_time, duration=1.0)

    @pytest.mark.parametrize("duration", [0.0, -1.0, math.nan])
    def test_rejects_bad_duration(self, duration):
        with pytest.raises(ValidationError):
            NarrationClip(id="n1", source_id="n1", start_time=0.0, duration=duration)

    def test_rejects_empty_id(self):
        with pytest.raises(ValidationError):
            MusicClip(id="", source_id="bgm", start_time=0.0, duration=1.0)

    def test_trim_window(self):
        clip = VideoClip(id="v1", shot_id="rec", start_time=0.0, duration=3.0, trim_start=10.0, trim_end=13.0)
        assert clip.source_window == (10.0, 13.0)

    def test_trim_start_only_uses_duration(self):
        clip = VideoClip(id="v1", shot_id="rec", start_time=0.0, duration=3.0, trim_start=10.0)
        assert clip.source_window == (10.0, 13.0)

    def test_untrimmed_clip_has_no_window(self):
        clip = VideoClip(id="v1", shot_id="s1", start_time=0.0, duration=3.0)
        assert clip.source_window is None

    def test_trim_end_must_follow_trim_start(self):
        with pytest.raises(ValidationError, match="trim_end"):
            VideoClip(id="v1", shot_id="rec", start_time=0.0, duration=3.0, trim_start=5.0, trim_end=5.0)

    def test_clips_are_immutable(self):
        clip = VideoClip(id="v1", shot_id="s1", start_time=0.0, duration=3.0)
        with pytest.raises(ValidationError):
            clip.start_time = 5.0

    def test_volume_range(self):
        with pytest.raises(ValidationError):
            NarrationClip(id="n1", source_id="n1", start_time=0.0, duration=1.0, volume=1.5)


class TestAudioDiscrimination:
    """Audio clips are discriminated by audio_type."""

    def test_parses_each_audio_type(self):
        track = Track.model_validate(
            {
                "id": "audio",
                "kind": "audio",
                "clips": [
                    {"type": "audio", "audio_type": "narration", "id": "n1", "source_id": "n1",
                     "start_time": 0, "duration": 2, "text": "Hello"},
                    {"type": "audio", "audio_type": "music", "id": "m1", "source_id": "bgm",
                     "start_time": 0, "duration": 10, "fade_in": 1.0},
                    {"type": "audio", "audio_type": "sfx", "id": "x1", "source_id": "whoosh",
                     "start_time": 3, "duration": 0.5},
                ],
            }
        )
        narration, music, sfx = track.clips
        assert isinstance(narration, NarrationClip)
        assert narration.text == "Hello"
        assert isinstance(music, MusicClip)
        assert music.fade_in == 1.0
        assert isinstance(sfx, SoundClip)

    def test_unknown_audio_type_rejected(self):
        with pytest.raises(ValidationError):
            Track.model_validate(
                {
                    "id": "audio",
                    "kind": "audio",
                    "clips": [{"type": "audio", "audio_type": "laugh_track", "id": "a", "source_id": "a",
                               "start_time": 0, "duration": 1}],
                }
            )


class TestTimeline:
    """Timeline-level invariants and accessors."""

    def test_total_duration_is_latest_end(self, sample_timeline):
        assert sample_timeline.total_duration == 10.0

    def test_total_duration_counts_audio_past_video(self):
        timeline = Timeline(
            tracks=(
                Track(id="v", kind="video", clips=(VideoClip(id="v1", shot_id="s1", start_time=0, duration=4),)),
                Track(id="a", kind="audio", clips=(NarrationClip(id="n1", source_id="n1", start_time=3, duration=2.5),)),
            )
        )
        assert timeline.total_duration == 5.5

    def test_empty_timeline(self):
        assert Timeline().total_duration == 0.0

    def test_total_duration_serialized(self, sample_timeline):
        assert sample_timeline.model_dump()["total_duration"] == 10.0

    def test_roundtrip_through_json(self, sample_timeline):
        restored = Timeline.model_validate_json(sample_timeline.model_dump_json())
        assert restored == sample_timeline

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate clip id"):
            Timeline(
                tracks=(
                    Track(id="v", kind="video", clips=(VideoClip(id="x", shot_id="s1", start_time=0, duration=1),)),
                    Track(id="a", kind="audio", clips=(NarrationClip(id="x", source_id="n", start_time=0, duration=1),)),
                )
            )

    def test_clip_kind_must_match_track(self):
        with pytest.raises(ValidationError, match="cannot live on"):
            Track(id="v", kind="video", clips=(NarrationClip(id="n1", source_id="n1", start_time=0, duration=1),))

    def test_accessors_sort_by_start_time(self):
        timeline = Timeline(
            tracks=(
                Track(
                    id="a",
                    kind="audio",
                    clips=(
                        NarrationClip(id="late", source_id="n2", start_time=8, duration=1),
                        MusicClip(id="bgm", source_id="bgm", start_time=0, duration=10),
                        NarrationClip(id="early", source_id="n1", start_time=1, duration=1),
                    ),
                ),
            )
        )
        assert [c.id for c in timeline.narration_clips()] == ["early", "late"]
        assert [c.id for c in timeline.music_clips()] == ["bgm"]
        assert timeline.video_clips() == []
        assert timeline.video_track is None
        assert timeline.audio_track.id == "a"

    def test_find_clip(self, sample_timeline):
        assert sample_timeline.find_clip("narration-n1").source_id == "n1"
        assert sample_timeline.find_clip("missing") is None
