# lending/middleware/logging.py
import time
import uuid
from typing import Callable, Awaitable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One START and one END (or FAILED) line per request, tagged with a request id.
    An id sent by the caller (gateway, frontend) is reused so logs can be joined.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        route = f"{request.method} {request.url.path}"

        with logger.contextualize(request_id=request_id):
            logger.info(f"RID:{request_id} START {route} from {request.client.host if request.client else 'unknown'}")
            try:
                response = await call_next(request)
            except Exception as e:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.opt(exception=True).error(f"RID:{request_id} FAILED {route} after {elapsed_ms:.1f}ms: {e}")
                raise # Ditangani generic_exception_handler

            elapsed_ms = (time.perf_counter() - started) * 1000
            token_data = getattr(request.state, "token_data", None)
            subject = token_data.sub if token_data is not None else "-"
            logger.info(f"RID:{request_id} END {route} status={response.status_code} sub={subject} {elapsed_ms:.1f}ms")

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
