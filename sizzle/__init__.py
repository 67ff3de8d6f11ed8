"""Sizzle reel render backend: timeline model, ducking, ffmpeg stages and export orchestration."""

__version__ = "0.1.0"
