"""
Centralized logging configuration for the lead runner.

Messages from a job carry a ``[job:<id>] [<component>] [p<page>]`` prefix so
one job can be followed through interleaved output. The same fields are
attached to each record (``job_id``, ``component``, ``page``) and emitted as
keys by the json format.
Supports DEBUG_MODE for verbose logging.
"""

import json
import logging
import os
import sys
from typing import Any, Dict, Optional


_GLOBAL_DEBUG_MODE = os.getenv("DEBUG_MODE", "false").lower() == "true"

CONTEXT_FIELDS = ("job_id", "component", "page")


def set_global_debug_mode(enabled: bool) -> None:
    """Set global debug mode."""
    global _GLOBAL_DEBUG_MODE
    _GLOBAL_DEBUG_MODE = enabled


def is_debug_mode() -> bool:
    return _GLOBAL_DEBUG_MODE


class JobLogger:
    """
    Logger bound to one job, the component emitting and optionally a page.

        log = get_logger(__name__, job_id=job.id, component="runner")
        page_log = log.at_page(3)
        page_log.info("Saved 25 lead(s)")   # [job:acme_2024] [runner] [p3] Saved 25 lead(s)
    """

    def __init__(
        self,
        name: str,
        job_id: Optional[str] = None,
        component: Optional[str] = None,
        page: Optional[int] = None,
        debug_mode: Optional[bool] = None
    ):
        self.logger = logging.getLogger(name)
        self.job_id = job_id
        self.component = component
        self.page = page

        self._debug_mode = debug_mode if debug_mode is not None else is_debug_mode()
        if self._debug_mode:
            self.logger.setLevel(logging.DEBUG)

    def bind(self, **context: Any) -> "JobLogger":
        """Copy of this logger with some of ``job_id``/``component``/``page`` replaced."""
        unknown = set(context) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context: {sorted(unknown)}")
        merged = {field: getattr(self, field) for field in CONTEXT_FIELDS}
        merged.update(context)
        return JobLogger(self.logger.name, debug_mode=self._debug_mode, **merged)

    def at_page(self, page: int) -> "JobLogger":
        return self.bind(page=page)

    def _context(self) -> Dict[str, Any]:
        return {field: getattr(self, field) for field in CONTEXT_FIELDS}

    def _format_message(self, message: str) -> str:
        prefix_parts = []
        if self.job_id:
            prefix_parts.append(f"[job:{self.job_id}]")
        if self.component:
            prefix_parts.append(f"[{self.component}]")
        if self.page is not None:
            prefix_parts.append(f"[p{self.page}]")

        if prefix_parts:
            return f"{' '.join(prefix_parts)} {message}"
        return message

    def _log(self, level: int, message: str, **kwargs) -> None:
        extra = {**self._context(), **kwargs.pop("extra", {})}
        self.logger.log(level, self._format_message(message), extra=extra, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with traceback."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **kwargs)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; job context keys are included when present."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO", format: str = "simple") -> None:
    """
    Configure global logging settings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format: Log format ("simple" or "json")
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if format == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


def get_logger(
    name: str,
    job_id: Optional[str] = None,
    component: Optional[str] = None,
    debug_mode: Optional[bool] = None
) -> JobLogger:
    """
    Get a job logger instance.

    Args:
        name: Logger name (usually __name__)
        job_id: Optional job identifier
        component: Optional component name
        debug_mode: If True, enables DEBUG level. If None, uses global setting.
    """
    return JobLogger(name, job_id, component, debug_mode=debug_mode)
