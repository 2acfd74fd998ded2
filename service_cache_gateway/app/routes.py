"""
Cache routes: the store/retrieve surface in front of a cache handler.

The key is forwarded verbatim. Payloads are neither buffered nor inspected
here; the handler reads the request body itself.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Request, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.errors import BackendError, BackendRejectedError, BackendTimeoutError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .handlers.contract import CacheHandler


logger = get_logger("cache_gateway.routes")


async def call_backend(operation: str, call: Callable[[], Awaitable[Any]],
                       timeout: Optional[float],
                       metrics: Optional[MetricsCollector] = None) -> Any:
    """Run one handler call under a deadline and map its failures."""
    try:
        if metrics is not None:
            with metrics.time_operation(operation):
                return await asyncio.wait_for(call(), timeout)
        return await asyncio.wait_for(call(), timeout)
    except StarletteHTTPException:
        # Handler chose its own HTTP status.
        raise
    except asyncio.TimeoutError as exc:
        error: BackendError = BackendTimeoutError(operation, timeout)
        cause: Exception = exc
    except BackendError as exc:
        error = cause = exc
    except Exception as exc:
        error = BackendRejectedError(
            f"{operation} failed: {type(exc).__name__}",
            {"operation": operation},
        )
        cause = exc

    if metrics is not None:
        metrics.record_backend_error(operation, error.code)
    logger.error(
        "Cache handler call failed",
        operation=operation,
        code=error.code,
        error=str(cause),
    )
    if error is cause:
        raise error
    raise error from cause


def create_cache_router(handler: CacheHandler, *, timeout: Optional[float] = None,
                        metrics: Optional[MetricsCollector] = None) -> APIRouter:
    """Build the ``/v1/cache/{key}`` routes around ``handler``."""
    router = APIRouter(prefix="/v1/cache", tags=["cache"])

    @router.put("/{key}")
    async def store_artifact(key: str, request: Request) -> Response:
        """Stream the request body into the cache handler."""
        await call_backend(
            "store_file",
            lambda: handler.store_file(key, request),
            timeout,
            metrics,
        )
        return Response(status_code=200)

    @router.get("/{key}")
    async def retrieve_artifact(key: str) -> Response:
        """Return the handler's response unchanged."""
        return await call_backend(
            "retrieve_file",
            lambda: handler.retrieve_file(key),
            timeout,
            metrics,
        )

    return router
