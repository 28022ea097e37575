"""Request tracing for the discount search: stage timings, the X-Search-Performance header and PERF logs."""

from .instrumentation import instrument_stage, timed_stage
from .trace import (
    SearchTrace,
    get_current_trace,
    reset_current_trace,
    set_current_trace,
)

__all__ = [
    "SearchTrace",
    "get_current_trace",
    "instrument_stage",
    "reset_current_trace",
    "set_current_trace",
    "timed_stage",
]
