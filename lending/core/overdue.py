# lending/core/overdue.py
from datetime import datetime, timezone
from typing import Optional
import logging

from lending.core.notifications import NotificationService
from lending.models.enums import NotificationType

logger = logging.getLogger(__name__)


async def scan_overdue(repository, notifications: Optional[NotificationService] = None, now: Optional[datetime] = None) -> int:
    """
    Sends a `return_overdue` notification for every approved request whose
    expected return time has passed. At most one notice per request per UTC
    day, so the scan can be re-run (scheduler, manual trigger) safely.
    Returns the number of notifications sent.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None: now = now.replace(tzinfo=timezone.utc)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    notifications = notifications or NotificationService(repository)

    overdue_requests = await repository.list_overdue_requests(now)
    logger.info(f"Overdue scan at {now.isoformat()}: {len(overdue_requests)} approved request(s) past due.")

    sent = 0
    for borrow_request in overdue_requests:
        if await repository.notification_exists(borrow_request.id, NotificationType.RETURN_OVERDUE, since=start_of_day):
            logger.debug(f"Request {borrow_request.id} already notified today; skipping.")
            continue
        item = await repository.get_item(borrow_request.item_id, include_inactive=True)
        await notifications.return_overdue(borrow_request, item)
        sent += 1

    logger.info(f"Overdue scan finished. Notified: {sent}, skipped: {len(overdue_requests) - sent}.")
    return sent
