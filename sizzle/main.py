import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sizzle.api import render
from sizzle.config import get_settings
from sizzle.constants.error_codes import get_error_spec
from sizzle.exceptions import SizzleError
from sizzle.middleware.request_context import build_meta, create_request_context
from sizzle.schemas.envelope import EnvelopeResponse, ErrorInfo

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    context = create_request_context()
    envelope = EnvelopeResponse(
        request_id=context.request_id,
        error=error,
        meta=build_meta(context),
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope.model_dump(exclude_none=True)),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors (422) with envelope format."""
    spec = get_error_spec("VALIDATION_ERROR")

    # Build a human-readable message from the first validation error
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"

    error = ErrorInfo(
        code="VALIDATION_ERROR",
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(422, error)


@app.exception_handler(SizzleError)
async def sizzle_exception_handler(request: Request, exc: SizzleError) -> JSONResponse:
    logger.warning(f"Unhandled render error on {request.url.path}: {exc}")
    return _error_response(exc.status_code, exc.to_error_info())


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    error = ErrorInfo(
        code="INTERNAL_ERROR",
        message="Internal server error",
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(500, error)


# Routers
app.include_router(render.router, prefix="/api", tags=["render"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version}


def run() -> None:
    import uvicorn

    uvicorn.run("sizzle.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
