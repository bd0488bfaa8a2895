# lending/core/rate_limiter.py
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from fastapi.responses import JSONResponse
from loguru import logger

from lending.core.config import RATE_LIMIT_ENABLED


def subject_or_address(request: Request) -> str:
    """Limit per token subject once AuthMiddleware has run, per client address otherwise."""
    token_data = getattr(request.state, "token_data", None)
    if token_data is not None:
        return f"sub:{token_data.sub}"
    return get_remote_address(request)


# In-memory storage; pakai storage_uri Redis untuk deployment multi-instance
limiter = Limiter(key_func=subject_or_address, enabled=RATE_LIMIT_ENABLED)

def get_rate_limiter() -> Limiter:
    return limiter

def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit hit by {subject_or_address(request)} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"detail": f"Too many requests ({exc.detail}). Please slow down and try again later."},
    )
