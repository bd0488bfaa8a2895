# lending/core/notifications.py
from typing import Awaitable, Callable, List, Optional
from loguru import logger

from lending.models.borrow_request import BorrowRequest
from lending.models.enums import NotificationType
from lending.models.item import Item
from lending.models.notification import Notification

NotificationListener = Callable[[Notification], Awaitable[None]]

# Listener global (misal: jembatan ke pub/sub realtime eksternal)
_listeners: List[NotificationListener] = []


def subscribe(listener: NotificationListener) -> None:
    if listener not in _listeners:
        _listeners.append(listener)


def unsubscribe(listener: NotificationListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


class NotificationService:
    """
    Persists notifications and hands each one to the subscribed listeners.
    Listener delivery is at-most-once: a failing listener is logged and skipped.
    """

    def __init__(self, repository, listeners: Optional[List[NotificationListener]] = None):
        self.repository = repository
        self.listeners = _listeners if listeners is None else listeners

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: NotificationType,
        related_item_id: Optional[str] = None,
        related_request_id: Optional[str] = None,
    ) -> Notification:
        notification = await self.repository.insert_notification(Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=notification_type,
            related_item_id=related_item_id,
            related_request_id=related_request_id,
        ))
        logger.info(f"Notification '{notification_type.value}' created for user {user_id} (request: {related_request_id}).")
        await self._publish(notification)
        return notification

    async def _publish(self, notification: Notification) -> None:
        for listener in list(self.listeners):
            try:
                await listener(notification)
            except Exception as e:
                logger.error(f"Notification listener {getattr(listener, '__name__', listener)} failed: {e}")

    # --- Pesan untuk setiap event lifecycle ---
    async def request_approved(self, borrow_request: BorrowRequest, item: Item) -> Notification:
        due = borrow_request.expected_return_at.strftime('%Y-%m-%d %H:%M UTC') if borrow_request.expected_return_at else "-"
        return await self.notify(
            borrow_request.user_id,
            "Request Approved",
            f"Your request for {borrow_request.requested_amount} unit(s) of '{item.name}' was approved. "
            f"Please return it by {due}.",
            NotificationType.ITEM_APPROVED,
            related_item_id=item.id,
            related_request_id=borrow_request.id,
        )

    async def request_rejected(self, borrow_request: BorrowRequest, item: Optional[Item]) -> Notification:
        item_name = item.name if item else "the item"
        return await self.notify(
            borrow_request.user_id,
            "Request Rejected",
            f"Your {borrow_request.request_type.value} request for {borrow_request.requested_amount} unit(s) of '{item_name}' was rejected.",
            NotificationType.ITEM_REJECTED,
            related_item_id=borrow_request.item_id,
            related_request_id=borrow_request.id,
        )

    async def reservation_available(self, borrow_request: BorrowRequest, item: Item) -> Notification:
        return await self.notify(
            borrow_request.user_id,
            "Reserved Item Available",
            f"{borrow_request.requested_amount} unit(s) of '{item.name}' are available for your reservation. "
            f"Your request is now waiting for staff approval.",
            NotificationType.ITEM_AVAILABLE,
            related_item_id=item.id,
            related_request_id=borrow_request.id,
        )

    async def reservation_queued(self, borrow_request: BorrowRequest, item: Item, position: int) -> Notification:
        return await self.notify(
            borrow_request.user_id,
            "Reservation Queue Update",
            f"Units of '{item.name}' were returned, but not enough for your reservation yet. "
            f"You are number {position} in the queue.",
            NotificationType.ITEM_AVAILABLE,
            related_item_id=item.id,
            related_request_id=borrow_request.id,
        )

    async def return_overdue(self, borrow_request: BorrowRequest, item: Optional[Item]) -> Notification:
        item_name = item.name if item else "a borrowed item"
        due = borrow_request.expected_return_at.strftime('%Y-%m-%d %H:%M UTC') if borrow_request.expected_return_at else "-"
        return await self.notify(
            borrow_request.user_id,
            "Return Overdue",
            f"'{item_name}' ({borrow_request.requested_amount} unit(s)) was due on {due}. Please return it as soon as possible.",
            NotificationType.RETURN_OVERDUE,
            related_item_id=borrow_request.item_id,
            related_request_id=borrow_request.id,
        )

    async def cancellation_requested(self, staff_id: str, borrow_request: BorrowRequest, item: Optional[Item], requester_name: str) -> Notification:
        item_name = item.name if item else borrow_request.item_id
        return await self.notify(
            staff_id,
            "Cancellation Requested",
            f"{requester_name} asked to cancel the approved {borrow_request.request_type.value} of "
            f"{borrow_request.requested_amount} unit(s) of '{item_name}'.",
            NotificationType.CANCELLATION_REQUEST,
            related_item_id=borrow_request.item_id,
            related_request_id=borrow_request.id,
        )
