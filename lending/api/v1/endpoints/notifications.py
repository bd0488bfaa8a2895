# lending/api/v1/endpoints/notifications.py
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Path, Body, Query
from loguru import logger

from lending.core.security import get_current_profile
from lending.db.repository import get_repository
from lending.models.notification import Notification
from lending.models.profile import Profile

router = APIRouter(
    tags=["Notifications"]
)


async def get_own_notification_or_404(repository, notification_id: str, current_profile: Profile) -> Notification:
    notification = await repository.get_notification(notification_id)
    # Notifikasi milik user lain diperlakukan sebagai tidak ditemukan
    if notification is None or notification.user_id != current_profile.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Notification '{notification_id}' not found.")
    return notification


@router.get("/", response_model=List[Notification.Response])
async def read_notifications(
    unread_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    """The caller's notifications, newest first."""
    notifications = await repository.list_notifications(current_profile.id, unread_only=unread_only, skip=skip, limit=limit)
    return [Notification.Response.model_validate(n.model_dump()) for n in notifications]


@router.get("/unread-count")
async def read_unread_count(
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    return {"unread": await repository.count_unread_notifications(current_profile.id)}


@router.patch("/read")
async def mark_notifications_read(
    body: Optional[Notification.MarkRead] = Body(None),
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    """Marks the given notifications (or all of them when no ids are sent) as read."""
    ids = body.ids if body else None
    updated = await repository.mark_notifications_read(current_profile.id, ids)
    logger.info(f"Profile '{current_profile.id}' marked {updated} notification(s) as read.")
    return {"updated": updated}


@router.patch("/{notification_id}/read", response_model=Notification.Response)
async def mark_notification_read(
    notification_id: str = Path(...),
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    notification = await get_own_notification_or_404(repository, notification_id, current_profile)
    if not notification.is_read:
        await repository.mark_notifications_read(current_profile.id, [notification.id])
        notification = notification.model_copy(update={"is_read": True})
    return Notification.Response.model_validate(notification.model_dump())


@router.delete("/read")
async def delete_read_notifications(
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    deleted = await repository.delete_notifications(current_profile.id, read_only=True)
    logger.info(f"Profile '{current_profile.id}' deleted {deleted} read notification(s).")
    return {"deleted": deleted}


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str = Path(...),
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    notification = await get_own_notification_or_404(repository, notification_id, current_profile)
    await repository.delete_notifications(current_profile.id, [notification.id])
    return None
