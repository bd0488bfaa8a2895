import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

# Konfigurasi harus ada sebelum modul `lending` di-import
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret")
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017/lending_test")
os.environ.setdefault("INTERNAL_API_TOKEN", "internal-test-token")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from jose import jwt

from lending.core.config import AUTH_JWT_SECRET, AUTH_JWT_ALGORITHM
from lending.db.repository import get_repository
from lending.main import app
from lending.models.borrow_request import BorrowRequest
from lending.models.enums import ACTIVE_REQUEST_STATUSES, NotificationType, ProfileRole, RequestStatus, RequestType
from lending.models.item import Item, utc_now
from lending.models.notification import Notification
from lending.models.profile import Profile
from lending.models.transition import Transition


class InMemoryRepository:
    """
    Same contract as MongoRepository, kept in dicts. Conditional writes check
    the stored status / version exactly like the Mongo filters do, and reads
    yield to the event loop so concurrent lifecycle calls interleave.
    """

    def __init__(self):
        self.items: Dict[str, Item] = {}
        self.requests: Dict[str, BorrowRequest] = {}
        self.notifications: Dict[str, Notification] = {}
        self.profiles: Dict[str, Profile] = {}

    # --- seed helpers (sync, for fixtures) ---
    def seed_item(self, **fields) -> Item:
        fields.setdefault("amount", 1)
        fields.setdefault("available_amount", fields["amount"])
        item = Item(id=str(ObjectId()), **fields)
        self.items[item.id] = item
        return item

    def seed_profile(self, profile_id: str, role: ProfileRole = ProfileRole.USER, **fields) -> Profile:
        profile = Profile(id=profile_id, role=role, **fields)
        self.profiles[profile.id] = profile
        return profile

    def seed_request(self, **fields) -> BorrowRequest:
        borrow_request = BorrowRequest(id=str(ObjectId()), **fields)
        self.requests[borrow_request.id] = borrow_request
        return borrow_request

    def seed_notification(self, user_id: str, title: str, **fields) -> Notification:
        fields.setdefault("message", title)
        fields.setdefault("type", NotificationType.ITEM_AVAILABLE)
        notification = Notification(id=str(ObjectId()), user_id=user_id, title=title, **fields)
        self.notifications[notification.id] = notification
        return notification

    # --- items ---
    async def get_item(self, item_id: str, include_inactive: bool = False) -> Optional[Item]:
        await asyncio.sleep(0)
        item = self.items.get(item_id)
        if item is None or (not include_inactive and not item.is_active):
            return None
        return item.model_copy()

    async def list_items(self, name=None, category=None, status=None, include_inactive=False, skip=0, limit=100) -> List[Item]:
        items = [
            i for i in self.items.values()
            if (include_inactive or i.is_active)
            and (not name or name.lower() in i.name.lower())
            and (not category or i.category == category)
            and (not status or i.status.value == status)
        ]
        items.sort(key=lambda i: i.name)
        return [i.model_copy() for i in items[skip:skip + limit]]

    async def insert_item(self, item: Item) -> Item:
        stored = item.model_copy(update={"id": str(ObjectId())})
        self.items[stored.id] = stored
        return stored.model_copy()

    async def update_item(self, before: Item, after: Item) -> bool:
        current = self.items.get(before.id)
        if current is None or current.version != before.version:
            return False
        self.items[before.id] = after.model_copy(update={"version": current.version + 1})
        return True

    # --- requests ---
    async def get_request(self, request_id: str) -> Optional[BorrowRequest]:
        await asyncio.sleep(0)
        borrow_request = self.requests.get(request_id)
        return borrow_request.model_copy() if borrow_request else None

    async def insert_request(self, borrow_request: BorrowRequest) -> BorrowRequest:
        stored = borrow_request.model_copy(update={"id": str(ObjectId())})
        self.requests[stored.id] = stored
        return stored.model_copy()

    async def list_requests(self, user_id=None, item_id=None, statuses=None, request_type=None, skip=0, limit=50) -> List[BorrowRequest]:
        found = [
            r for r in self.requests.values()
            if (not user_id or r.user_id == user_id)
            and (not item_id or r.item_id == item_id)
            and (not statuses or r.status in [RequestStatus(s) for s in statuses])
            and (not request_type or r.request_type == RequestType(request_type))
        ]
        found.sort(key=lambda r: r.requested_at, reverse=True)
        return [r.model_copy() for r in found[skip:skip + limit]]

    async def list_reservation_queue(self, item_id: str) -> List[BorrowRequest]:
        await asyncio.sleep(0)
        # dict menjaga urutan insert, jadi sort stabil untuk requested_at yang sama
        queue = [
            r for r in self.requests.values()
            if r.item_id == item_id and r.status == RequestStatus.PENDING and r.request_type == RequestType.RESERVE
        ]
        queue.sort(key=lambda r: r.requested_at)
        return [r.model_copy() for r in queue]

    async def has_reservation_queue(self, item_id: str) -> bool:
        return bool(await self.list_reservation_queue(item_id))

    async def count_active_requests(self, item_id: str) -> int:
        return sum(1 for r in self.requests.values() if r.item_id == item_id and r.status in ACTIVE_REQUEST_STATUSES)

    async def list_overdue_requests(self, now: datetime) -> List[BorrowRequest]:
        return [
            r.model_copy() for r in self.requests.values()
            if r.status == RequestStatus.APPROVED and r.expected_return_at is not None and r.expected_return_at < now
        ]

    async def apply_transition(self, transition: Transition) -> bool:
        before, after = transition.request_before, transition.request_after
        stored = self.requests.get(before.id)
        if stored is None or stored.status != before.status or stored.request_type != before.request_type:
            return False
        if transition.item_before is not None and transition.item_after is not None:
            stored_item = self.items.get(transition.item_before.id)
            if (
                stored_item is None
                or stored_item.version != transition.item_before.version
                or stored_item.available_amount != transition.item_before.available_amount
            ):
                return False
            self.items[stored_item.id] = transition.item_after.model_copy(update={"version": stored_item.version + 1})
        self.requests[before.id] = after.model_copy()
        return True

    # --- notifications ---
    async def insert_notification(self, notification: Notification) -> Notification:
        stored = notification.model_copy(update={"id": str(ObjectId())})
        self.notifications[stored.id] = stored
        return stored.model_copy()

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        notification = self.notifications.get(notification_id)
        return notification.model_copy() if notification else None

    async def list_notifications(self, user_id: str, unread_only: bool = False, skip: int = 0, limit: int = 50) -> List[Notification]:
        found = [n for n in self.notifications.values() if n.user_id == user_id and (not unread_only or not n.is_read)]
        found.sort(key=lambda n: n.created_at, reverse=True)
        return [n.model_copy() for n in found[skip:skip + limit]]

    async def count_unread_notifications(self, user_id: str) -> int:
        return sum(1 for n in self.notifications.values() if n.user_id == user_id and not n.is_read)

    async def mark_notifications_read(self, user_id: str, ids: Optional[List[str]] = None) -> int:
        updated = 0
        for notification in self.notifications.values():
            if notification.user_id == user_id and not notification.is_read and (ids is None or notification.id in ids):
                notification.is_read = True
                updated += 1
        return updated

    async def delete_notifications(self, user_id: str, ids: Optional[List[str]] = None, read_only: bool = False) -> int:
        doomed = [
            n.id for n in self.notifications.values()
            if n.user_id == user_id and (ids is None or n.id in ids) and (not read_only or n.is_read)
        ]
        for notification_id in doomed:
            del self.notifications[notification_id]
        return len(doomed)

    async def notification_exists(self, related_request_id, notification_type, since: datetime) -> bool:
        return any(
            n.related_request_id == related_request_id and n.type == notification_type and n.created_at >= since
            for n in self.notifications.values()
        )

    # --- profiles ---
    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        profile = self.profiles.get(profile_id)
        return profile.model_copy() if profile else None

    async def upsert_profile(self, profile: Profile) -> Profile:
        existing = self.profiles.get(profile.id)
        if existing is None:
            self.profiles[profile.id] = profile.model_copy(update={"updated_at": utc_now()})
        else:
            self.profiles[profile.id] = existing.model_copy(update={
                "full_name": profile.full_name, "email": profile.email, "updated_at": utc_now()
            })
        return self.profiles[profile.id].model_copy()

    async def update_profile_role(self, profile_id: str, role: ProfileRole) -> Optional[Profile]:
        existing = self.profiles.get(profile_id)
        if existing is None:
            return None
        self.profiles[profile_id] = existing.model_copy(update={"role": role, "updated_at": utc_now()})
        return self.profiles[profile_id].model_copy()

    async def list_staff(self) -> List[Profile]:
        return [p.model_copy() for p in self.profiles.values() if p.role == ProfileRole.STAFF]


# --- Token helpers ---
def make_token(sub: str, email: Optional[str] = None, full_name: Optional[str] = None, expires_in: int = 3600) -> str:
    claims = {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    if email: claims["email"] = email
    if full_name: claims["user_metadata"] = {"full_name": full_name}
    return jwt.encode(claims, AUTH_JWT_SECRET, algorithm=AUTH_JWT_ALGORITHM)


def auth_header(sub: str, **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, **claims)}"}


def in_days(days: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


# --- Fixtures ---
@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def staff(repository) -> Profile:
    return repository.seed_profile("staff-1", ProfileRole.STAFF, full_name="Sari Staff", email="sari@university.edu")


@pytest.fixture
def user(repository) -> Profile:
    return repository.seed_profile("user-1", full_name="Budi User", email="budi@university.edu")


@pytest.fixture
def other_user(repository) -> Profile:
    return repository.seed_profile("user-2", full_name="Citra User", email="citra@university.edu")


@pytest.fixture
def camera(repository) -> Item:
    return repository.seed_item(name="Camera", category="Multimedia", amount=5)


@pytest.fixture
def client(repository):
    # Tanpa `with`: lifespan (init_db / scheduler) tidak dijalankan
    app.dependency_overrides[get_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def staff_headers(staff) -> dict:
    return auth_header(staff.id, email=staff.email)


@pytest.fixture
def user_headers(user) -> dict:
    return auth_header(user.id, email=user.email)
