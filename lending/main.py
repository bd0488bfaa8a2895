# lending/main.py
from fastapi import FastAPI, Request, status as fastapi_status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager

from lending.core.config import (
    setup_logging, SCHEDULER_ENABLED, SCHEDULER_TIMEZONE, OVERDUE_CHECK_INTERVAL_MINUTES,
)
from loguru import logger
from fastapi.middleware.gzip import GZipMiddleware
from lending.middleware.logging import RequestLoggingMiddleware
from lending.middleware.authentication import AuthMiddleware
from lending.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from lending.core.exceptions import LendingError
from slowapi.errors import RateLimitExceeded

from lending.db.database import init_db, close_db, get_client
from lending.api.v1.api import api_router_v1
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from lending.scheduler.jobs import check_overdue_requests

#  --- Scheduler Instance ---
scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Campus Lending API starting up...")
    await init_db()
    logger.info("MongoDB + Beanie ready.")

    if SCHEDULER_ENABLED:
        logger.info("Adding scheduler jobs...")
        scheduler.add_job(
            check_overdue_requests,
            trigger=IntervalTrigger(minutes=OVERDUE_CHECK_INTERVAL_MINUTES),
            id="check_overdue_requests_job",
            name="Check Overdue Returns",
            replace_existing=True,
            misfire_grace_time=60*15 # Toleransi 15 menit jika terlewat
        )
        scheduler.start()
        logger.info(f"Scheduler started with timezone: {scheduler.timezone}")
    yield
    logger.info("Campus Lending API shutting down...")
    if scheduler.running: scheduler.shutdown()
    await close_db()

app = FastAPI(
    title="Campus Lending API",
    description="Item lending for the university: inventory, borrow/reserve requests, staff approval and notifications.",
    version="1.0.0",
    lifespan=lifespan
)
# --- KONFIGURASI MIDDLEWARE ---

# 1. Error Handling
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)

@app.exception_handler(LendingError)
async def lending_exception_handler(request: Request, exc: LendingError):
    logger.info(f"Lending action refused ({exc.code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation Error: {exc.errors()}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "errors": jsonable_errors(exc)},
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled Exception: {exc}")
    return JSONResponse(status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "An internal server error occurred."})

def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx bisa berisi objek exception yang tidak bisa di-serialize
    return [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]

# 2. Authentication Middleware (dijalankan setelah logging)
app.add_middleware(AuthMiddleware)

# 3. Request Logging Middleware
app.add_middleware(RequestLoggingMiddleware)

# 4. Rate Limiter State (untuk decorator @limiter.limit)
app.state.limiter = get_rate_limiter()

# 5. GZip Middleware
app.add_middleware(GZipMiddleware, minimum_size=500)

# --- END MIDDLEWARE ---


app.include_router(api_router_v1)

@app.get("/")
async def read_root():
    return {"message": "Welcome to the Campus Lending API!"}

@app.get("/health/db")
async def ping_mongodb():
    try:
        await get_client().admin.command('ping')
        return {"status": "success", "message": "MongoDB connection is healthy."}
    except Exception as e:
        logger.error(f"MongoDB ping failed: {e}")
        return JSONResponse(status_code=503, content={"detail": "MongoDB connection failed."})

@app.get("/health")
async def health():
    return {"status": "ok"}
