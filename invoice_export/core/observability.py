"""Observability and tracing utilities."""

import inspect
import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Callable, TypeVar

from fastapi import Request, Response

# Context variables for request and export job tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
job_id_var: ContextVar[str] = ContextVar("job_id", default="")

# Logger
logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)


def get_request_id() -> str:
    """Get current request ID."""
    return request_id_var.get()


def get_job_id() -> str:
    """Get current export job ID."""
    return job_id_var.get()


def set_job_context(job_id: str | None = None) -> str:
    """Bind an export job ID to the current context."""
    job_id = job_id or uuid.uuid4().hex
    job_id_var.set(job_id)
    return job_id


async def request_middleware(request: Request, call_next: Callable) -> Response:
    """Request middleware for observability."""
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request_id_var.set(request_id)
    request.state.request_id = request_id

    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    response.headers["x-request-id"] = request_id
    response.headers["x-process-time"] = str(process_time)

    logger.info(
        "Request processed",
        extra={
            "request_id": request_id,
            "method": request.method,
            "url": str(request.url),
            "status_code": response.status_code,
            "process_time": process_time,
        },
    )

    return response


def _context_extra(function_name: str) -> dict[str, Any]:
    return {
        "request_id": get_request_id(),
        "job_id": get_job_id(),
        "function": function_name,
    }


def trace_function(name: str | None = None) -> Callable[[F], F]:
    """Decorator to trace function execution."""
    def decorator(func: F) -> F:
        function_name = name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            logger.debug(f"Starting {function_name}", extra=_context_extra(function_name))

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {function_name}",
                    extra={
                        **_context_extra(function_name),
                        "duration": time.time() - start_time,
                        "status": "error",
                        "error": str(e),
                    },
                )
                raise

            logger.debug(
                f"Completed {function_name}",
                extra={
                    **_context_extra(function_name),
                    "duration": time.time() - start_time,
                    "status": "success",
                },
            )
            return result

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            logger.debug(f"Starting {function_name}", extra=_context_extra(function_name))

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {function_name}",
                    extra={
                        **_context_extra(function_name),
                        "duration": time.time() - start_time,
                        "status": "error",
                        "error": str(e),
                    },
                )
                raise

            logger.debug(
                f"Completed {function_name}",
                extra={
                    **_context_extra(function_name),
                    "duration": time.time() - start_time,
                    "status": "success",
                },
            )
            return result

        # Return appropriate wrapper based on function type
        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        else:
            return sync_wrapper  # type: ignore

    return decorator
