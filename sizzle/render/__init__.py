from sizzle.render.assets import AssetMaterializer, ExportAssets, InMemoryAssetLookup, MediaAsset, ShotAssetLookup
from sizzle.render.audio_mixer import AudioMixer
from sizzle.render.ducking import DuckingAutomation, VolumeWindow, compile_ducking
from sizzle.render.muxer import FinalMuxer
from sizzle.render.pipeline import ExportResult, RenderPipeline
from sizzle.render.stitcher import VideoStitcher
from sizzle.render.transcoder import FFmpegTranscoder, Transcoder

__all__ = [
    "RenderPipeline",
    "ExportResult",
    "Transcoder",
    "FFmpegTranscoder",
    "VideoStitcher",
    "AudioMixer",
    "FinalMuxer",
    "DuckingAutomation",
    "VolumeWindow",
    "compile_ducking",
    "MediaAsset",
    "InMemoryAssetLookup",
    "ShotAssetLookup",
    "ExportAssets",
    "AssetMaterializer",
]
