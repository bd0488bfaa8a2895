# lending/models/enums.py
from enum import Enum

class ItemStatus(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"
    RESERVED = "reserved"

class RequestType(str, Enum):
    BORROW = "borrow"
    RESERVE = "reserve"

class RequestStatus(str, Enum):
    PENDING = "pending"       # <-- Status awal setelah submit user
    APPROVED = "approved"     # <-- Disetujui staff, unit sudah dipotong
    REJECTED = "rejected"
    CANCELLED = "cancelled"   # <-- Dibatalkan pemilik saat masih pending
    COMPLETED = "completed"   # <-- Sudah dikembalikan

ACTIVE_REQUEST_STATUSES = (RequestStatus.PENDING, RequestStatus.APPROVED)
TERMINAL_REQUEST_STATUSES = (RequestStatus.REJECTED, RequestStatus.CANCELLED, RequestStatus.COMPLETED)

class NotificationType(str, Enum):
    ITEM_AVAILABLE = "item_available"
    RETURN_OVERDUE = "return_overdue"
    ITEM_APPROVED = "item_approved"
    ITEM_REJECTED = "item_rejected"
    CANCELLATION_REQUEST = "cancellation_request"

class ProfileRole(str, Enum):
    USER = "user"
    STAFF = "staff"
