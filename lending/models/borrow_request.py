# lending/models/borrow_request.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel, ASCENDING, DESCENDING
from datetime import datetime

from .enums import RequestStatus, RequestType
from .item import utc_now


# --- Skema referensi singkat (untuk response yang di-join) ---
class ItemRefSimple(BaseModel):
    id: str
    name: str
    amount: int
    available_amount: int
    class Config: from_attributes=True

class ProfileRefSimple(BaseModel):
    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    class Config: from_attributes=True
# -------------------------------------------------------------


class BorrowRequest(BaseModel):
    """A user's ask to borrow or reserve some units of an item."""
    id: Optional[str] = None
    item_id: str
    user_id: str
    request_type: RequestType
    requested_amount: int = Field(..., ge=1)
    status: RequestStatus = RequestStatus.PENDING
    notes: Optional[str] = None
    requested_at: datetime = Field(default_factory=utc_now)
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    borrowed_at: Optional[datetime] = None
    expected_return_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    promoted_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        item_id: str = Field(...)
        request_type: RequestType = RequestType.BORROW
        requested_amount: int = Field(default=1, description="Number of units (must be >= 1)")
        notes: Optional[str] = Field(None, max_length=1000)

    class Approve(BaseModel):
        expected_return_at: datetime = Field(..., description="When the borrower must bring the units back")

    class Response(BaseModel):
        id: str
        item_id: str
        user_id: str
        request_type: RequestType
        requested_amount: int
        status: RequestStatus
        notes: Optional[str] = None
        requested_at: datetime
        approved_at: Optional[datetime] = None
        approved_by: Optional[str] = None
        borrowed_at: Optional[datetime] = None
        expected_return_at: Optional[datetime] = None
        returned_at: Optional[datetime] = None
        promoted_at: Optional[datetime] = None
        updated_at: datetime
        item: Optional[ItemRefSimple] = None
        profile: Optional[ProfileRefSimple] = None
        class Config: from_attributes=True; use_enum_values = True

    @property
    def is_active(self) -> bool:
        return self.status in (RequestStatus.PENDING, RequestStatus.APPROVED)


class BorrowRequestDocument(Document):
    item_id: str
    user_id: str
    request_type: RequestType
    requested_amount: int = Field(..., ge=1)
    status: RequestStatus = RequestStatus.PENDING
    notes: Optional[str] = None
    requested_at: datetime = Field(default_factory=utc_now)
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    borrowed_at: Optional[datetime] = None
    expected_return_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    promoted_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "borrow_requests"
        indexes = [
            IndexModel([("item_id", ASCENDING), ("status", ASCENDING)], name="request_item_status_index"),
            IndexModel([("user_id", ASCENDING)], name="request_user_index"),
            IndexModel([("requested_at", DESCENDING)], name="request_requested_at_index"),
            IndexModel([("status", ASCENDING), ("expected_return_at", ASCENDING)], name="request_overdue_index"),
        ]

    def to_record(self) -> BorrowRequest:
        return BorrowRequest.model_validate({**self.model_dump(exclude={"id", "revision_id"}), "id": str(self.id)})
