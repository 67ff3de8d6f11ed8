"""Custom exceptions for the sizzle render backend.

Every failure an export can hit is one of these. They carry a
machine-readable code, the HTTP status the API answers with, and a location
naming the stage, clip and asset involved so a single terminal error is
enough to identify what broke.
"""

from sizzle.constants.error_codes import get_error_spec
from sizzle.schemas.envelope import ErrorInfo, ErrorLocation


class SizzleError(Exception):
    """Base exception for all sizzle render errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        details: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.details = details
        super().__init__(self.message)

    @property
    def stage(self) -> str | None:
        return self.location.stage if self.location else None

    def with_stage(self, stage: str) -> "SizzleError":
        """Attach the failing stage unless a more specific one is already set."""
        if self.location is None:
            self.location = ErrorLocation(stage=stage)
        elif self.location.stage is None:
            self.location = self.location.model_copy(update={"stage": stage})
        return self

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
            details=self.details,
        )

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


# =============================================================================
# Input Errors (4xx)
# =============================================================================


class MissingAssetError(SizzleError):
    """A clip references an asset id the asset lookup cannot resolve."""

    code = "ASSET_NOT_FOUND"
    status_code = 404
    message = "Asset not found"

    def __init__(
        self,
        asset_id: str,
        *,
        clip_id: str | None = None,
        stage: str | None = None,
    ):
        self.asset_id = asset_id
        message = f"Asset not found: {asset_id}"
        if clip_id:
            message += f" (referenced by clip {clip_id})"
        location = ErrorLocation(stage=stage, clip_id=clip_id, asset_id=asset_id)
        super().__init__(message, location=location)


class AssetFetchError(SizzleError):
    """A URL-addressed asset could not be downloaded or decoded."""

    code = "ASSET_FETCH_FAILED"
    status_code = 502
    message = "Asset could not be fetched"

    def __init__(self, asset_id: str, reason: str, *, stage: str | None = None):
        self.asset_id = asset_id
        location = ErrorLocation(stage=stage, asset_id=asset_id)
        super().__init__(f"Asset {asset_id} could not be fetched: {reason}", location=location)


class InvalidTimelineError(SizzleError):
    """Timeline input violates the render contract."""

    code = "INVALID_TIMELINE"
    status_code = 400
    message = "Invalid timeline"

    def __init__(
        self,
        message: str | None = None,
        *,
        clip_id: str | None = None,
        field: str | None = None,
    ):
        location = ErrorLocation(clip_id=clip_id, field=field) if (clip_id or field) else None
        super().__init__(message or self.message, location=location)


class ClipNotFoundError(SizzleError):
    """Clip not found."""

    code = "CLIP_NOT_FOUND"
    status_code = 404
    message = "Clip not found"

    def __init__(self, clip_id: str | None = None):
        message = f"Clip not found: {clip_id}" if clip_id else self.message
        location = ErrorLocation(clip_id=clip_id) if clip_id else None
        super().__init__(message, location=location)


# =============================================================================
# Render Errors (5xx)
# =============================================================================


class RenderStageError(SizzleError):
    """The media tool failed or produced unreadable output."""

    code = "SUBPROCESS_FAILED"
    status_code = 500
    message = "Render stage failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        stage: str | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
        clip_id: str | None = None,
    ):
        self.returncode = returncode
        location = ErrorLocation(stage=stage, clip_id=clip_id) if (stage or clip_id) else None
        super().__init__(message or self.message, location=location, details=stderr)


class StageTimeoutError(RenderStageError):
    """A stage (or its subprocess) exceeded its wall-clock budget."""

    code = "STAGE_TIMEOUT"
    status_code = 504
    message = "Render stage timed out"

    def __init__(self, stage: str | None = None, timeout_s: float | None = None):
        self.timeout_s = timeout_s
        message = self.message
        if timeout_s is not None:
            message = f"Render stage timed out after {timeout_s:g}s"
        super().__init__(message, stage=stage)


class ExportCancelledError(SizzleError):
    """The export was cancelled by the caller."""

    code = "EXPORT_CANCELLED"
    status_code = 409
    message = "Export cancelled"
