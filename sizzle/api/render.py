"""Render API endpoints.

One endpoint per render stage plus a full export. Media travels as base64
data URLs (http(s) URLs are also accepted as inputs) and every request
renders inside its own workspace.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from sizzle.api.deps import AppSettings, MaterializerDep, TranscoderDep
from sizzle.exceptions import SizzleError
from sizzle.middleware.request_context import RequestContext, build_meta, create_request_context
from sizzle.render.assets import ExportAssets, InMemoryAssetLookup, MediaAsset, ShotAssetLookup, encode_data_url
from sizzle.render.pipeline import RenderPipeline, run_stage, stage_budget
from sizzle.render.stage import STAGE_MUSIC, STAGE_MUX, STAGE_NARRATION, STAGE_STITCH, StageOutput
from sizzle.render.workspace import RenderWorkspace
from sizzle.schemas.envelope import EnvelopeResponse
from sizzle.schemas.render import (
    AssembleRequest,
    ExportRequest,
    ExportResponse,
    MusicDuckRequest,
    NarrationAssembleRequest,
    StageResponse,
    StitchRequest,
)
from sizzle.schemas.timeline import MusicClip, SoundClip, VideoClip

router = APIRouter()
logger = logging.getLogger(__name__)

MIME_TYPES = {"video": "video/mp4", "audio": "audio/mpeg"}


def envelope_success(context: RequestContext, data: object) -> EnvelopeResponse:
    return EnvelopeResponse(
        request_id=context.request_id,
        data=data,
        meta=build_meta(context),
    )


def envelope_error_from_exception(context: RequestContext, exc: SizzleError) -> JSONResponse:
    """Convert a SizzleError to an envelope error response."""
    envelope = EnvelopeResponse(
        request_id=context.request_id,
        error=exc.to_error_info(),
        meta=build_meta(context),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(envelope.model_dump(exclude_none=True)),
    )


async def _stage_response(
    output: StageOutput,
    media_type: Literal["video", "audio"],
    context: RequestContext,
) -> StageResponse:
    data = await asyncio.to_thread(output.path.read_bytes)
    return StageResponse(
        media_url=encode_data_url(data, MIME_TYPES[media_type]),
        media_type=media_type,
        duration=output.duration,
        byte_size=output.byte_size,
        processing_time_ms=context.elapsed_ms,
        timestamp=datetime.now(timezone.utc),
    )


def _assets_from_urls(urls: dict[str, str], media_type: Literal["video", "image", "audio"]) -> dict[str, MediaAsset]:
    return {asset_id: MediaAsset.from_url(url, media_type) for asset_id, url in urls.items()}


def _warn_still_fallbacks(
    context: RequestContext,
    clips: list[VideoClip],
    request: StitchRequest | ExportRequest,
) -> None:
    for clip in clips:
        if clip.shot_id not in request.videos and clip.shot_id in request.stills:
            context.warn(f"Shot {clip.shot_id} has no video; its still image is used for clip {clip.id}")


@router.post("/video/stitch", response_model=EnvelopeResponse)
async def stitch_video(
    request: StitchRequest,
    transcoder: TranscoderDep,
    settings: AppSettings,
) -> EnvelopeResponse | JSONResponse:
    """Normalize and concatenate the timeline's video clips into one silent video."""
    context = create_request_context()
    clips = request.timeline.video_clips()
    logger.info(f"[API] stitch request={context.request_id} clips={len(clips)}")
    _warn_still_fallbacks(context, clips, request)

    lookup = ShotAssetLookup(
        videos=_assets_from_urls(request.videos, "video"),
        stills=_assets_from_urls(request.stills, "image"),
    )
    try:
        async with RenderWorkspace(context.request_id) as workspace:
            output = await run_stage(
                STAGE_STITCH,
                transcoder.stitch_video(clips, lookup, workspace),
                stage_budget(settings, settings.stitch_timeout_s, len(clips) + 1),
            )
            response = await _stage_response(output, "video", context)
    except SizzleError as exc:
        logger.warning(f"[API] stitch failed request={context.request_id} code={exc.code}: {exc}")
        return envelope_error_from_exception(context, exc)

    return envelope_success(context, response)


@router.post("/audio/narration/assemble", response_model=EnvelopeResponse)
async def assemble_narration(
    request: NarrationAssembleRequest,
    transcoder: TranscoderDep,
    settings: AppSettings,
) -> EnvelopeResponse | JSONResponse:
    """Lay narration clips onto one loudness-normalized track of ``total_duration``."""
    context = create_request_context()
    clips = request.timeline.narration_clips()
    logger.info(f"[API] narration request={context.request_id} clips={len(clips)}")

    lookup = InMemoryAssetLookup(_assets_from_urls(request.narration, "audio"))
    try:
        async with RenderWorkspace(context.request_id) as workspace:
            output = await run_stage(
                STAGE_NARRATION,
                transcoder.render_narration(clips, lookup, request.total_duration, workspace),
                stage_budget(settings, settings.narration_timeout_s),
            )
            response = await _stage_response(output, "audio", context)
    except SizzleError as exc:
        logger.warning(f"[API] narration failed request={context.request_id} code={exc.code}: {exc}")
        return envelope_error_from_exception(context, exc)

    return envelope_success(context, response)


@router.post("/audio/music/duck", response_model=EnvelopeResponse)
async def duck_music(
    request: MusicDuckRequest,
    transcoder: TranscoderDep,
    settings: AppSettings,
) -> EnvelopeResponse | JSONResponse:
    """Apply narration-driven ducking to a music track.

    Without a music clip on the timeline the music plays from 0 for the full
    ``total_duration``.
    """
    context = create_request_context()
    music_clips = request.timeline.music_clips()
    if not music_clips:
        context.warn("Timeline has no music clip; the music plays from 0 for total_duration")
        music_clips = [MusicClip(id="music", source_id="music", start_time=0.0, duration=request.total_duration)]
    music_asset = MediaAsset.from_url(request.music_url, "audio")
    lookup = InMemoryAssetLookup({clip.source_id: music_asset for clip in music_clips})
    narration_clips = request.timeline.narration_clips()
    logger.info(
        f"[API] music request={context.request_id} narration_clips={len(narration_clips)} "
        f"ducking={request.ducking_settings.enabled}"
    )

    try:
        async with RenderWorkspace(context.request_id) as workspace:
            output = await run_stage(
                STAGE_MUSIC,
                transcoder.render_music(
                    music_clips,
                    lookup,
                    narration_clips,
                    request.ducking_settings,
                    request.total_duration,
                    workspace,
                ),
                stage_budget(settings, settings.music_timeout_s),
            )
            response = await _stage_response(output, "audio", context)
    except SizzleError as exc:
        logger.warning(f"[API] music failed request={context.request_id} code={exc.code}: {exc}")
        return envelope_error_from_exception(context, exc)

    return envelope_success(context, response)


@router.post("/video/assemble", response_model=EnvelopeResponse)
async def assemble_video(
    request: AssembleRequest,
    transcoder: TranscoderDep,
    materializer: MaterializerDep,
    settings: AppSettings,
) -> EnvelopeResponse | JSONResponse:
    """Mux a stitched video with the narration and music tracks."""
    context = create_request_context()
    logger.info(f"[API] assemble request={context.request_id}")

    try:
        async with RenderWorkspace(context.request_id) as workspace:
            inputs_dir = workspace.stage_dir(STAGE_MUX) / "inputs"
            video = await materializer.materialize(
                "video", MediaAsset.from_url(request.video_url, "video"), inputs_dir
            )
            narration = await materializer.materialize(
                "narration", MediaAsset.from_url(request.narration_audio_url, "audio"), inputs_dir
            )
            music = await materializer.materialize(
                "music", MediaAsset.from_url(request.music_audio_url, "audio"), inputs_dir
            )
            output = await run_stage(
                STAGE_MUX,
                transcoder.mux(video, narration, music, workspace),
                stage_budget(settings, settings.mux_timeout_s + settings.probe_timeout_s),
            )
            response = await _stage_response(output, "video", context)
    except SizzleError as exc:
        logger.warning(f"[API] assemble failed request={context.request_id} code={exc.code}: {exc}")
        return envelope_error_from_exception(context, exc.with_stage(STAGE_MUX))

    return envelope_success(context, response)


@router.post("/export", response_model=EnvelopeResponse)
async def export_video(
    request: ExportRequest,
    transcoder: TranscoderDep,
    settings: AppSettings,
) -> EnvelopeResponse | JSONResponse:
    """Run the whole render: stitch, narration, music, mux."""
    context = create_request_context()
    assets = ExportAssets(
        shots=ShotAssetLookup(
            videos=_assets_from_urls(request.videos, "video"),
            stills=_assets_from_urls(request.stills, "image"),
        ),
        narration=InMemoryAssetLookup(_assets_from_urls(request.narration, "audio")),
        music=InMemoryAssetLookup(_assets_from_urls(request.music, "audio")),
    )
    pipeline = RenderPipeline(transcoder=transcoder, settings=settings)
    logger.info(f"[API] export request={context.request_id}")
    _warn_still_fallbacks(context, request.timeline.video_clips(), request)
    ignored = [c.id for c in request.timeline.all_clips() if isinstance(c, SoundClip)]
    if ignored:
        context.warn(f"Sound effect and ambient clips are not rendered: {', '.join(ignored)}")

    try:
        result = await pipeline.export(
            request.timeline,
            assets,
            ducking=request.ducking_settings,
            request_id=context.request_id,
        )
    except SizzleError as exc:
        logger.warning(f"[API] export failed request={context.request_id} code={exc.code}: {exc}")
        return envelope_error_from_exception(context, exc)

    response = ExportResponse(
        media_url=encode_data_url(result.data, MIME_TYPES["video"]),
        media_type="video",
        duration=result.duration,
        byte_size=result.byte_size,
        processing_time_ms=result.processing_time_ms,
        timestamp=datetime.now(timezone.utc),
        stage_timings_ms=result.stage_timings_ms,
    )
    return envelope_success(context, response)
