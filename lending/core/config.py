# lending/core/config.py
import os
import sys
from dotenv import load_dotenv
from loguru import logger
import logging
from pathlib import Path

try:
    project_root = Path(__file__).resolve().parent.parent.parent
    dotenv_path = project_root / '.env'
    logger.debug(f"Calculated .env path using pathlib: {dotenv_path}")
except Exception as e:
    logger.error(f"Error calculating project root/dotenv path: {e}")
    # Fallback jika __file__ tidak terdefinisi dengan benar
    dotenv_path = Path(".env")
    logger.warning(f"Using fallback .env path: {dotenv_path.resolve()}")

# --- Muat file .env JIKA ADA ---
if dotenv_path.is_file():
    logger.info(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path)
else:
    logger.warning(f".env file not found at {dotenv_path}. Relying on system environment variables.")


# --- Intercept Handler (agar log `logging` standar masuk ke Loguru) ---
class InterceptHandler(logging.Handler):
    """Routes records from the standard logging module into Loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try: level = logger.level(record.levelname).name
        except ValueError: level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def setup_logging():
    """Konfigurasi Loguru untuk aplikasi."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/lending_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = _env_bool("LOG_SERIALIZE", "false")
    log_to_file = _env_bool("LOG_TO_FILE", "true")

    logger.remove() # Hapus handler default

    # Handler Console
    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    # Handler File
    if log_to_file:
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                log_file_path,
                level=log_level_name,
                format=log_format,
                rotation=log_rotation,
                retention=log_retention,
                serialize=log_serialize,
                enqueue=True,
                backtrace=True,
                diagnose=False,
                encoding="utf-8"
            )
            logger.info(f"File logging enabled at: {log_file_path}")
        except OSError as e:
            logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    # --- Intercept Log Standar ---
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "fastapi", "starlette", "apscheduler", "pymongo")):
            existing_logger = logging.getLogger(name)
            existing_logger.handlers = [InterceptHandler()]
            existing_logger.propagate = False # Hindari duplikasi dengan root logger
    # pymongo sangat cerewet di level DEBUG
    logging.getLogger("pymongo").setLevel(logging.WARNING)

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


# --- JWT Configuration (token diterbitkan identity provider eksternal) ---
AUTH_JWT_SECRET: str = os.getenv("AUTH_JWT_SECRET")
if not AUTH_JWT_SECRET:
    logger.critical("FATAL: AUTH_JWT_SECRET environment variable is not set.")
    raise ValueError("AUTH_JWT_SECRET environment variable is not set.")

AUTH_JWT_ALGORITHM: str = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
AUTH_JWT_AUDIENCE: str | None = os.getenv("AUTH_JWT_AUDIENCE") or None

# --- Internal trigger token (POST /api/v1/check-overdue) ---
INTERNAL_API_TOKEN: str | None = os.getenv("INTERNAL_API_TOKEN") or None

# --- Database Configuration ---
MONGODB_URL: str = os.getenv("MONGODB_URL")
if not MONGODB_URL:
    logger.critical("FATAL: MONGODB_URL environment variable is not set.")
    raise ValueError("MONGODB_URL environment variable is not set.")

_default_db_name = "lending_db"
_path_part = MONGODB_URL.split('/')[-1].split('?')[0]
if _path_part and MONGODB_URL.count('/') >= 3: _default_db_name = _path_part # mongodb://host:port/<db>
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)
MONGODB_USE_TRANSACTIONS: bool = _env_bool("MONGODB_USE_TRANSACTIONS", "true")

# --- Lifecycle ---
try:
    LIFECYCLE_MAX_RETRIES: int = int(os.getenv("LIFECYCLE_MAX_RETRIES", "3"))
except ValueError:
    logger.warning("Invalid LIFECYCLE_MAX_RETRIES. Using default: 3.")
    LIFECYCLE_MAX_RETRIES = 3

# --- Scheduler ---
SCHEDULER_ENABLED: bool = _env_bool("SCHEDULER_ENABLED", "true")
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")
try:
    OVERDUE_CHECK_INTERVAL_MINUTES: int = int(os.getenv("OVERDUE_CHECK_INTERVAL_MINUTES", "60"))
except ValueError:
    logger.warning("Invalid OVERDUE_CHECK_INTERVAL_MINUTES. Using default: 60.")
    OVERDUE_CHECK_INTERVAL_MINUTES = 60

# --- Rate limiting ---
RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", "true")
RATE_LIMIT_SUBMIT: str = os.getenv("RATE_LIMIT_SUBMIT", "20/hour")
RATE_LIMIT_STAFF_ACTIONS: str = os.getenv("RATE_LIMIT_STAFF_ACTIONS", "60/minute")
RATE_LIMIT_READS: str = os.getenv("RATE_LIMIT_READS", "120/minute")


logger.info(f"JWT Algorithm: {AUTH_JWT_ALGORITHM}")
logger.info(f"Database Name: {DATABASE_NAME} (transactions: {MONGODB_USE_TRANSACTIONS})")
logger.info(f"Overdue check interval: {OVERDUE_CHECK_INTERVAL_MINUTES} minutes")
