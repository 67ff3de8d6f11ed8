from sizzle.schemas.render import DuckingSettings, ExportRequest, StageResponse
from sizzle.schemas.script import MusicBrief, NarrationSegment, Script, Shot
from sizzle.schemas.timeline import MusicClip, NarrationClip, SoundClip, Timeline, Track, VideoClip

__all__ = [
    "Timeline",
    "Track",
    "VideoClip",
    "NarrationClip",
    "MusicClip",
    "SoundClip",
    "Shot",
    "NarrationSegment",
    "MusicBrief",
    "Script",
    "DuckingSettings",
    "ExportRequest",
    "StageResponse",
]
