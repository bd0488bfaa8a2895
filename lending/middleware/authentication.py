# lending/middleware/authentication.py
from typing import Callable, Awaitable
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.security.utils import get_authorization_scheme_param
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from loguru import logger
from jose import JWTError

from lending.core.security import decode_access_token

# Path tanpa token identity provider
PUBLIC_PATHS = frozenset({
    "/",
    "/openapi.json",
    # Trigger overdue memakai shared secret sendiri (INTERNAL_API_TOKEN)
    "/api/v1/check-overdue",
})
PUBLIC_PREFIXES = ("/docs", "/redoc", "/health")


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Verifies the bearer JWT on protected paths and puts its claims on `request.state.token_data`."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        path = request.url.path
        rid = getattr(request.state, "request_id", "N/A")

        # Preflight CORS tidak membawa token
        if request.method == "OPTIONS" or is_public_path(path):
            return await call_next(request)

        scheme, token = get_authorization_scheme_param(request.headers.get("Authorization"))
        if scheme.lower() != "bearer" or not token:
            logger.warning(f"RID:{rid} No bearer token for {path}.")
            return _unauthorized("Not authenticated")

        try:
            request.state.token_data = decode_access_token(token)
        except JWTError as e:
            logger.warning(f"RID:{rid} Rejected token for {path}: {e}")
            return _unauthorized(f"Invalid token: {e}")

        logger.debug(f"RID:{rid} Subject '{request.state.token_data.sub}' authenticated for {path}.")
        return await call_next(request)
