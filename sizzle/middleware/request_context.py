"""Per-request id, timing and response warnings for envelope responses."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import perf_counter
from uuid import uuid4

from sizzle.schemas.envelope import ResponseMeta


@dataclass
class RequestContext:
    request_id: str
    start_time: float
    warnings: list[str] = field(default_factory=list)

    @property
    def elapsed_ms(self) -> int:
        return int((perf_counter() - self.start_time) * 1000)

    def warn(self, message: str) -> None:
        """Record a non-fatal condition reported back in ``meta.warnings``."""
        if message not in self.warnings:
            self.warnings.append(message)


def create_request_context(request_id: str | None = None) -> RequestContext:
    return RequestContext(request_id=request_id or str(uuid4()), start_time=perf_counter())


def build_meta(context: RequestContext, api_version: str = "1.0") -> ResponseMeta:
    return ResponseMeta(
        api_version=api_version,
        processing_time_ms=context.elapsed_ms,
        timestamp=datetime.now(timezone.utc),
        warnings=list(context.warnings),
    )
