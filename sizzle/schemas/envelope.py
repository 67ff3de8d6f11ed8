"""Response envelope shared by every render endpoint.

Exactly one of ``data`` and ``error`` is set. Errors name the render stage,
clip and asset involved so a failed export can be traced without logs.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    api_version: str = "1.0"
    processing_time_ms: int
    timestamp: datetime
    warnings: list[str] = Field(default_factory=list)  # non-fatal render notes (still fallbacks, skipped clips)


class ErrorLocation(BaseModel):
    stage: str | None = None  # preflight, stitch, narration, music, mux, probe
    clip_id: str | None = None
    asset_id: str | None = None
    field: str | None = None


class ErrorInfo(BaseModel):
    code: str
    message: str
    location: ErrorLocation | None = None
    retryable: bool = False
    suggested_fix: str | None = None
    details: str | None = None  # tail of the media tool's stderr


class EnvelopeResponse(BaseModel):
    request_id: str
    data: Any | None = None
    error: ErrorInfo | None = None
    meta: ResponseMeta
