from dataclasses import dataclass
from pathlib import Path
from typing import Any

STAGE_PREFLIGHT = "preflight"
STAGE_STITCH = "stitch"
STAGE_NARRATION = "narration"
STAGE_MUSIC = "music"
STAGE_MUX = "mux"


@dataclass
class StageOutput:
    """Media file produced by a stage, with the metadata callers report."""

    path: Path
    duration: float  # seconds
    byte_size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "duration": self.duration,
            "byte_size": self.byte_size,
        }
