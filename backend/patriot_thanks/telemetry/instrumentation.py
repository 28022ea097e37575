from __future__ import annotations

from contextlib import contextmanager
from functools import wraps
from time import perf_counter
from typing import Callable, Iterator, ParamSpec, TypeVar

from .trace import SEARCH_STAGES, get_current_trace

P = ParamSpec("P")
R = TypeVar("R")


def _check_stage(stage: str) -> None:
    if stage not in SEARCH_STAGES:
        raise ValueError(f"Unknown search stage {stage!r}; expected one of {', '.join(SEARCH_STAGES)}")


@contextmanager
def timed_stage(stage: str) -> Iterator[None]:
    _check_stage(stage)
    started = perf_counter()
    try:
        yield
    finally:
        trace = get_current_trace()
        if trace is not None:
            trace.record_stage_time(stage, (perf_counter() - started) * 1000.0)


def instrument_stage(stage: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Accumulate the wrapped call's wall time under ``stage`` on the current trace.

    Geocoding, the two database queries, Places lookups and ranking all run synchronously
    inside the request thread, so only plain callables are supported.
    """
    _check_stage(stage)

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with timed_stage(stage):
                return func(*args, **kwargs)

        return wrapper

    return decorator
