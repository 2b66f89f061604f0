"""
Centralized error handling for the lead runner.

Defines the exception hierarchy the request layer maps onto HTTP status
codes, plus decorators for best-effort operations whose failure must be
logged but never abort a job.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


class LeadRunnerError(Exception):
    """Base class for all lead runner errors."""


class JobNotFoundError(LeadRunnerError):
    """No job record exists for the given id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobConflictError(LeadRunnerError):
    """Operation is not allowed in the job's current state (e.g. deleting a running job)."""


class InvalidJobRequestError(LeadRunnerError):
    """Caller supplied an unusable request (bad source URL, nothing to stop...)."""


class CredentialMissingError(LeadRunnerError):
    """No stored credential for a required site."""

    def __init__(self, site: str):
        super().__init__(f"No stored credential for {site}")
        self.site = site


class SidebarError(LeadRunnerError):
    """A sidebar extension could not be located or read."""


class SidebarLoginError(SidebarError):
    """The sidebar extension reports a logged-out session."""


def best_effort(
    operation_name: str,
    component: str = "unknown",
    critical: bool = False,
    log_success: bool = False,
    fallback_value: Any = None,
):
    """
    Decorator for operations whose failure is logged and then ignored.

    Works on both plain and ``async`` functions. On failure the wrapped call
    returns ``fallback_value``.

    Args:
        operation_name: Human-readable operation name (e.g., "job persistence")
        component: Component identifier (e.g., "job_store", "csv_store")
        critical: If True, logs at ERROR level with stack trace; if False, WARNING
        log_success: If True, logs successful completion at DEBUG level
        fallback_value: Value to return on failure

    Usage:
        @best_effort("deduplicate output", component="runner", fallback_value=0)
        def _dedupe(self, path):
            ...
    """

    def _log_failure(logger: logging.Logger, e: Exception) -> None:
        log_level = logging.ERROR if critical else logging.WARNING
        logger.log(
            log_level,
            f"[{component}] [{operation_name}] Failed: {e}",
            exc_info=critical,
        )

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        logger = logging.getLogger(func.__module__)

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    result = await func(*args, **kwargs)
                    if log_success:
                        logger.debug(f"[{component}] [{operation_name}] Completed")
                    return result
                except Exception as e:
                    _log_failure(logger, e)
                    return fallback_value

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
                if log_success:
                    logger.debug(f"[{component}] [{operation_name}] Completed")
                return result
            except Exception as e:
                _log_failure(logger, e)
                return fallback_value

        return wrapper

    return decorator


def safe_execute(
    func: Callable[..., T],
    *args,
    operation_name: str = "operation",
    logger: Optional[logging.Logger] = None,
    fallback: T = None,
    critical: bool = False,
    **kwargs,
) -> T:
    """
    Execute a function safely with error handling and logging.

    Alternative to the decorator for one-off calls.

    Usage:
        removed = safe_execute(
            path.unlink,
            operation_name="remove stale job file",
            logger=logger,
            fallback=None,
        )
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    try:
        return func(*args, **kwargs)
    except Exception as e:
        log_level = logging.ERROR if critical else logging.WARNING
        logger.log(
            log_level,
            f"[{operation_name}] Failed: {e}",
            exc_info=critical,
        )
        return fallback
