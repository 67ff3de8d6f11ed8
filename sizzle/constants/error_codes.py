"""Error codes dictionary for the render API.

Single source of truth for error codes, their retryability, and the
human-readable fix attached to error responses.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Input errors (not retryable, fix input)
    # ==========================================================================
    "ASSET_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Generate the referenced asset (or remove the clip) and export again",
    },
    "ASSET_FETCH_FAILED": {
        "retryable": True,
        "suggested_fix": "Check that the asset URL is reachable or send the asset as a data URL",
    },
    "INVALID_TIMELINE": {
        "retryable": False,
        "suggested_fix": "Fix clip start times and durations so every clip has start >= 0 and duration > 0",
    },
    "CLIP_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Refresh the timeline; the clip id no longer exists",
    },
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    # ==========================================================================
    # Render errors
    # Transcoding failures are rarely transient, so nothing is retried
    # automatically; the export must be restarted from the top.
    # ==========================================================================
    "SUBPROCESS_FAILED": {
        "retryable": False,
        "suggested_fix": "Inspect the ffmpeg diagnostic output; the source media may be corrupt or unsupported",
    },
    "STAGE_TIMEOUT": {
        "retryable": False,
        "suggested_fix": "Shorten the timeline or raise the stage timeout setting",
    },
    "EXPORT_CANCELLED": {
        "retryable": False,
    },
    # ==========================================================================
    # System errors
    # ==========================================================================
    "INTERNAL_ERROR": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested fix
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
