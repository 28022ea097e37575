from __future__ import annotations

import json
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import perf_counter
from uuid import UUID, uuid4

_TRACE_CONTEXT: ContextVar["SearchTrace | None"] = ContextVar("search_trace", default=None)

SEARCH_STAGES: tuple[str, ...] = ("geocode", "db", "places", "ranking")
REQUIRED_STAGES: tuple[str, ...] = ("db", "ranking")


def _round_or_none(value: float | None) -> float | None:
    if value is None:
        return None
    return round(value, 3)


@dataclass
class SearchTrace:
    request_id: UUID = field(default_factory=uuid4)
    path: str = ""
    method: str = "GET"
    request_start_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    search_type: str | None = None
    stage_times_ms: dict[str, float] = field(default_factory=dict)
    total_time_ms: float | None = None
    local_count: int | None = None
    external_count: int | None = None
    search_pipeline_active: bool = False
    _request_perf_counter_start: float = field(default_factory=perf_counter, repr=False)

    def mark_search(self, search_type: str) -> None:
        self.search_type = search_type
        self.search_pipeline_active = True

    def record_stage_time(self, stage: str, duration_ms: float) -> None:
        if stage not in SEARCH_STAGES:
            return
        self.stage_times_ms[stage] = self.stage_times_ms.get(stage, 0.0) + duration_ms

    def set_result_summary(self, local_count: int, external_count: int) -> None:
        self.local_count = local_count
        self.external_count = external_count

    def stage_time(self, stage: str) -> float | None:
        return self.stage_times_ms.get(stage)

    def finalize(self) -> None:
        if self.total_time_ms is None:
            self.total_time_ms = (perf_counter() - self._request_perf_counter_start) * 1000.0

        if self.search_pipeline_active:
            for stage in SEARCH_STAGES:
                self.stage_times_ms.setdefault(stage, 0.0)
            if self.local_count is None:
                self.local_count = 0
            if self.external_count is None:
                self.external_count = 0

    def to_header_value(self) -> str:
        payload: dict[str, object] = {"request_id": str(self.request_id)}
        for stage in SEARCH_STAGES:
            payload[f"{stage}_time_ms"] = _round_or_none(self.stage_times_ms.get(stage))
        payload["total_time_ms"] = _round_or_none(self.total_time_ms)
        payload["local_count"] = self.local_count
        payload["external_count"] = self.external_count
        return json.dumps(payload, separators=(",", ":"))

    def missing_required_stages(self) -> list[str]:
        if not self.search_pipeline_active:
            return []
        return [stage for stage in REQUIRED_STAGES if stage not in self.stage_times_ms]


def get_current_trace() -> SearchTrace | None:
    return _TRACE_CONTEXT.get()


def set_current_trace(trace: SearchTrace) -> Token:
    return _TRACE_CONTEXT.set(trace)


def reset_current_trace(token: Token) -> None:
    _TRACE_CONTEXT.reset(token)
