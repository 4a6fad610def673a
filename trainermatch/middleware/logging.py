"""Request/response logging middleware"""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 5.0


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log each request and its outcome with the request ID attached"""

    def __init__(self, app, log_requests: bool = True, log_responses: bool = True):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        request_id = getattr(request.state, "request_id", "unknown")

        if self.log_requests:
            logger.info(
                "Incoming request",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "query_params": dict(request.query_params),
                    "client_host": request.client.host if request.client else "unknown",
                },
            )

        response: Response = await call_next(request)

        # For SSE responses this measures time to first byte, not stream length
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(round(process_time, 4))

        if self.log_responses:
            self._log_response(request, response, process_time, request_id)

        return response

    def _log_response(
        self,
        request: Request,
        response: Response,
        process_time: float,
        request_id: str,
    ) -> None:
        extra = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "process_time": round(process_time, 4),
            "content_type": response.headers.get("content-type"),
        }
        logger.info("Request completed", extra=extra)

        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning("Slow request detected", extra=extra)
