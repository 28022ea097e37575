from __future__ import annotations

import logging

from .trace import get_current_trace

PERF_LEVEL_NUM = 25
PERF_LEVEL_NAME = "PERF"
PERF_LOGGER_NAME = "patriot_thanks.perf"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"

# Third-party loggers that emit one INFO line per request or statement.
NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "passlib")


class RequestIdFilter(logging.Filter):
    """Stamps each record with the id of the request being served, or ``-``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            trace = get_current_trace()
            record.request_id = str(trace.request_id) if trace is not None else "-"
        return True


def register_perf_level() -> None:
    if logging.getLevelName(PERF_LEVEL_NUM) != PERF_LEVEL_NAME:
        logging.addLevelName(PERF_LEVEL_NUM, PERF_LEVEL_NAME)


def resolve_log_level(value: str | None, fallback: int = logging.INFO) -> int:
    if not value:
        return fallback
    normalized = value.strip().upper()
    if normalized == PERF_LEVEL_NAME:
        return PERF_LEVEL_NUM
    resolved = logging.getLevelName(normalized)
    if isinstance(resolved, int):
        return resolved
    return fallback


def _install_request_id_filter(root: logging.Logger) -> None:
    for handler in root.handlers:
        if not any(isinstance(item, RequestIdFilter) for item in handler.filters):
            handler.addFilter(RequestIdFilter())


def configure_logging(app_level: str, perf_level: str) -> None:
    register_perf_level()
    app_log_level = resolve_log_level(app_level, fallback=logging.INFO)
    perf_log_level = resolve_log_level(perf_level, fallback=PERF_LEVEL_NUM)

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=app_log_level, format=LOG_FORMAT)
    else:
        root.setLevel(app_log_level)
    _install_request_id_filter(root)

    logging.getLogger(PERF_LOGGER_NAME).setLevel(perf_log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(app_log_level, logging.WARNING))
