# lending/scheduler/jobs.py
import logging
from datetime import datetime, timezone

from lending.core.overdue import scan_overdue
from lending.db.repository import MongoRepository

logger = logging.getLogger("scheduler_jobs")


async def check_overdue_requests():
    """Scheduled job: runs the overdue scan against MongoDB."""
    now_utc = datetime.now(timezone.utc)
    logger.info(f"Running check_overdue_requests job at {now_utc}")
    try:
        notified = await scan_overdue(MongoRepository(), now=now_utc)
    except Exception:
        # Jangan re-raise: job berikutnya akan mencoba lagi (scan idempotent)
        logger.error("Overdue scan job failed.", exc_info=True)
        return
    logger.info(f"Job finished. Overdue notifications sent: {notified}")
