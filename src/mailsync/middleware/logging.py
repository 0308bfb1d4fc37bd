"""Search API request logging."""
import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

PROBE_PREFIX = "/api/v1/health/"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id and log one ``search_api_request`` line per call.

    The id is bound to structlog context vars so gateway log lines emitted
    while serving the request carry it too. Probe traffic is not logged.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.url.path.startswith(PROBE_PREFIX):
            return await call_next(request)

        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("search_api_request_failed", path=request.url.path)
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "search_api_request",
            request_id=request_id,
            path=request.url.path,
            query=request.query_params.get("q"),
            status=response.status_code,
            duration_ms=elapsed_ms,
            outcome="success" if response.status_code < 400 else "failure",
        )
        response.headers["x-request-id"] = request_id
        return response
