# lending/models/item.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field, HttpUrl
from pymongo import IndexModel, ASCENDING
from datetime import datetime, timezone

from .enums import ItemStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Item(BaseModel):
    """Inventory entry counted in units (total vs. currently available)."""
    id: Optional[str] = None
    name: str = Field(..., max_length=200)
    category: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    image_url: Optional[str] = None
    amount: int = Field(..., ge=1, description="Total units owned")
    available_amount: int = Field(..., ge=0, description="Units not borrowed")
    status: ItemStatus = ItemStatus.AVAILABLE
    current_borrower_id: Optional[str] = None
    is_active: bool = True
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # --- Pydantic Schemas for API ---
    class Create(BaseModel):
        name: str = Field(..., min_length=1, max_length=200)
        category: Optional[str] = Field(None, max_length=100)
        description: Optional[str] = None
        image_url: Optional[HttpUrl] = None
        amount: int = Field(default=1, ge=1)

    class Update(BaseModel):
        name: Optional[str] = Field(None, min_length=1, max_length=200)
        category: Optional[str] = Field(None, max_length=100)
        description: Optional[str] = None
        image_url: Optional[HttpUrl] = None
        amount: Optional[int] = Field(None, ge=1, description="New total; available units shift by the same delta")
        is_active: Optional[bool] = None

    class Response(BaseModel):
        id: str
        name: str
        category: Optional[str] = None
        description: Optional[str] = None
        image_url: Optional[str] = None
        amount: int
        available_amount: int
        status: ItemStatus
        current_borrower_id: Optional[str] = None
        is_active: bool
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True
            use_enum_values = True


class ItemDocument(Document):
    """Model Dokumen Beanie untuk Item (bentuk penyimpanan di MongoDB)."""
    name: str
    category: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    amount: int = Field(..., ge=1)
    available_amount: int = Field(..., ge=0)
    status: ItemStatus = ItemStatus.AVAILABLE
    current_borrower_id: Optional[str] = None
    is_active: bool = True
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "items"
        indexes = [
            IndexModel([("name", ASCENDING)], name="item_name_index"),
            IndexModel([("category", ASCENDING)], name="item_category_index", sparse=True),
            IndexModel([("status", ASCENDING)], name="item_status_index"),
            IndexModel([("is_active", ASCENDING)], name="item_is_active_index"),
        ]

    def to_record(self) -> Item:
        return Item.model_validate({**self.model_dump(exclude={"id", "revision_id"}), "id": str(self.id)})
