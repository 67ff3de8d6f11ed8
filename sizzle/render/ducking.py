"""
Music ducking automation.

Compiles narration timing into a piecewise-linear volume curve for the music
track. Each narration clip contributes three windows (fade down, hold, fade
up). Windows are kept in insertion order and evaluated newest first, so when
two clips' windows overlap the later clip decides the volume.

The same curve is available as a Python function (``volume_at``) and as an
FFmpeg ``volume`` filter expression (``to_ffmpeg_expression``).
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Literal, Sequence

from sizzle.schemas.render import DuckingSettings
from sizzle.schemas.timeline import NarrationClip

logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD = 0.2  # seconds the fade-down starts before narration

WindowKind = Literal["fade_down", "hold", "fade_up"]


def _fmt(value: float) -> str:
    """Compact, locale-independent number for FFmpeg expressions."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


@dataclass(frozen=True)
class VolumeWindow:
    """Half-open interval [start, end) with a linear ramp from_volume -> to_volume."""

    start: float
    end: float
    from_volume: float
    to_volume: float
    kind: WindowKind

    def contains(self, t: float) -> bool:
        return self.start <= t < self.end

    def value_at(self, t: float) -> float:
        if self.from_volume == self.to_volume:
            return self.from_volume
        progress = (t - self.start) / (self.end - self.start)
        return self.from_volume + (self.to_volume - self.from_volume) * progress

    def to_expression(self) -> str:
        if self.from_volume == self.to_volume:
            return _fmt(self.from_volume)
        delta = self.to_volume - self.from_volume
        width = self.end - self.start
        return f"{_fmt(self.from_volume)}+({_fmt(delta)})*(t-{_fmt(self.start)})/{_fmt(width)}"


@dataclass
class DuckingAutomation:
    """Compiled volume-over-time function for the music track."""

    normal_volume: float
    windows: list[VolumeWindow] = field(default_factory=list)

    @property
    def is_constant(self) -> bool:
        return not self.windows

    def volume_at(self, t: float) -> float:
        # Newest window first: later narration clips override earlier ones
        for window in reversed(self.windows):
            if window.contains(t):
                return window.value_at(t)
        return self.normal_volume

    def sample(self, times: Iterable[float]) -> list[tuple[float, float]]:
        return [(t, self.volume_at(t)) for t in times]

    def to_ffmpeg_expression(self) -> str:
        """
        Render the curve as an expression for ``volume=...:eval=frame``.

        Built inside out: the oldest window is innermost so the newest window's
        condition is tested first, matching ``volume_at``.
        """
        expr = _fmt(self.normal_volume)
        for window in self.windows:
            condition = f"gte(t,{_fmt(window.start)})*lt(t,{_fmt(window.end)})"
            expr = f"if({condition},{window.to_expression()},{expr})"
        return expr


def compile_ducking(
    narration_clips: Sequence[NarrationClip],
    settings: DuckingSettings,
    lookahead: float = DEFAULT_LOOKAHEAD,
) -> DuckingAutomation:
    """
    Build the music volume automation for a set of narration clips.

    Args:
        narration_clips: Narration clips in any order (sorted here by start time)
        settings: Ducking parameters
        lookahead: Seconds the fade-down begins before each clip starts

    Returns:
        DuckingAutomation; constant ``normal_volume`` when ducking is disabled
        or there is no narration
    """
    automation = DuckingAutomation(normal_volume=settings.normal_volume)
    if not settings.enabled or not narration_clips:
        return automation

    normal = settings.normal_volume
    ducked = settings.ducked_volume
    fade = settings.fade_duration

    for clip in sorted(narration_clips, key=lambda c: c.start_time):
        fade_start = max(0.0, clip.start_time - lookahead)
        fade_end = fade_start + fade
        unfade_start = clip.start_time + clip.duration
        unfade_end = unfade_start + fade

        candidates = (
            VolumeWindow(fade_start, fade_end, normal, ducked, "fade_down"),
            VolumeWindow(fade_end, unfade_start, ducked, ducked, "hold"),
            VolumeWindow(unfade_start, unfade_end, ducked, normal, "fade_up"),
        )
        automation.windows.extend(w for w in candidates if w.end > w.start)

    logger.debug(
        f"[DUCKING] Compiled {len(automation.windows)} windows "
        f"from {len(narration_clips)} narration clips"
    )
    return automation
