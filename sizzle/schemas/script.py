"""Authored script input for the timeline builder.

The script is what the storyboard step produces: ordered shots, narration
lines with their intended absolute timing, and an optional music brief.
"""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

ShotType = Literal["cinematic", "extracted"]


class Shot(BaseModel):
    id: str
    title: str = ""
    shot_type: ShotType = "cinematic"
    # Source window, only meaningful for shots extracted from a longer recording
    start_time: float | None = None
    end_time: float | None = None

    @model_validator(mode="after")
    def _check_source_window(self) -> "Shot":
        if self.shot_type == "extracted" and (self.start_time is None or self.end_time is None):
            raise ValueError(f"Extracted shot {self.id} needs start_time and end_time")
        return self


class NarrationSegment(BaseModel):
    id: str
    text: str = ""
    start_time: float
    end_time: float


class MusicBrief(BaseModel):
    id: str
    prompt: str = ""
    duration: float | None = Field(default=None, gt=0)  # target length in seconds


class Script(BaseModel):
    title: str = ""
    shots: list[Shot] = Field(default_factory=list)
    narration: list[NarrationSegment] = Field(default_factory=list)
    music: MusicBrief | None = None
