# lending/models/notification.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel, ASCENDING, DESCENDING
from datetime import datetime

from .enums import NotificationType
from .item import utc_now


class Notification(BaseModel):
    id: Optional[str] = None
    user_id: str
    title: str
    message: str
    type: NotificationType
    is_read: bool = False
    related_item_id: Optional[str] = None
    related_request_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    class Response(BaseModel):
        id: str
        user_id: str
        title: str
        message: str
        type: NotificationType
        is_read: bool
        related_item_id: Optional[str] = None
        related_request_id: Optional[str] = None
        created_at: datetime
        class Config: from_attributes=True; use_enum_values = True

    class MarkRead(BaseModel):
        """Body untuk menandai beberapa notifikasi sebagai sudah dibaca (kosong = semua)."""
        ids: Optional[list[str]] = None


class NotificationDocument(Document):
    user_id: str
    title: str
    message: str
    type: NotificationType
    is_read: bool = False
    related_item_id: Optional[str] = None
    related_request_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "notifications"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)], name="notification_user_created_index"),
            IndexModel([("related_request_id", ASCENDING), ("type", ASCENDING)], name="notification_request_type_index", sparse=True),
        ]

    def to_record(self) -> Notification:
        return Notification.model_validate({**self.model_dump(exclude={"id", "revision_id"}), "id": str(self.id)})
