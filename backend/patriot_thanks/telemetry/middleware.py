from __future__ import annotations

import logging

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .logging_utils import PERF_LEVEL_NUM, PERF_LOGGER_NAME
from .trace import SearchTrace, reset_current_trace, set_current_trace

logger = logging.getLogger(__name__)
perf_logger = logging.getLogger(PERF_LOGGER_NAME)


class TelemetryMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, enabled: bool = True) -> None:
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace = SearchTrace(path=request.url.path, method=request.method)
        request.state.request_id = str(trace.request_id)
        token = set_current_trace(trace)

        response: Response | None = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            trace.finalize()
            if response is not None and request.url.path.startswith("/api/"):
                response.headers["X-Request-Id"] = str(trace.request_id)
                if trace.search_pipeline_active:
                    response.headers["X-Search-Performance"] = trace.to_header_value()

            if self.enabled:
                self._log_trace(trace, status_code)
            reset_current_trace(token)

    def _log_trace(self, trace: SearchTrace, status_code: int) -> None:
        if not trace.search_pipeline_active:
            return

        missing_stages = trace.missing_required_stages()
        if missing_stages:
            logger.warning(
                "Search trace missing stage timing(s): %s",
                ", ".join(missing_stages),
                extra={"request_id": str(trace.request_id)},
            )

        perf_logger.log(
            PERF_LEVEL_NUM,
            "search_trace request_id=%s status=%s search_type=%s geocode_ms=%s db_ms=%s places_ms=%s "
            "ranking_ms=%s total_ms=%s local=%s external=%s",
            trace.request_id,
            status_code,
            trace.search_type,
            trace.stage_time("geocode"),
            trace.stage_time("db"),
            trace.stage_time("places"),
            trace.stage_time("ranking"),
            trace.total_time_ms,
            trace.local_count,
            trace.external_count,
        )
