# lending/db/repository.py
"""
MongoDB access for the lending service.

This is the narrow datastore contract the lifecycle manager and the endpoints
talk to. Reads go through the Beanie documents; the lifecycle writes use the
raw pymongo collection so that each update carries the condition it depends on
(`find_one_and_update` with the previously read status / version).
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
import logging
import re

from beanie import PydanticObjectId
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from lending.core.config import MONGODB_USE_TRANSACTIONS
from lending.db.database import get_client
from lending.models.borrow_request import BorrowRequest, BorrowRequestDocument
from lending.models.enums import ProfileRole, RequestStatus, RequestType, NotificationType, ACTIVE_REQUEST_STATUSES
from lending.models.item import Item, ItemDocument, utc_now
from lending.models.notification import Notification, NotificationDocument
from lending.models.profile import Profile, ProfileDocument
from lending.models.transition import Transition

logger = logging.getLogger(__name__)

# Field yang boleh ditulis oleh transisi lifecycle
_ITEM_TRANSITION_FIELDS = ("amount", "available_amount", "status", "current_borrower_id", "is_active",
                           "name", "category", "description", "image_url")
_REQUEST_TRANSITION_FIELDS = ("request_type", "status", "approved_at", "approved_by", "borrowed_at",
                              "expected_return_at", "returned_at", "promoted_at")


class _TransitionConflict(Exception):
    """Internal: a conditional update matched nothing, abort the transaction."""


def _oid(value: Optional[str]) -> Optional[ObjectId]:
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


class MongoRepository:
    def __init__(self, use_transactions: bool = MONGODB_USE_TRANSACTIONS):
        self.use_transactions = use_transactions

    # --- Session helper ---
    @asynccontextmanager
    async def _transaction(self):
        """Yields a session inside a started transaction, or None when transactions are disabled."""
        if not self.use_transactions:
            yield None
            return
        async with get_client().start_session() as session:
            async with await session.start_transaction():
                yield session

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------
    async def get_item(self, item_id: str, include_inactive: bool = False) -> Optional[Item]:
        oid = _oid(item_id)
        if oid is None:
            return None
        query = {"_id": oid}
        if not include_inactive:
            query["is_active"] = True
        doc = await ItemDocument.find_one(query)
        return doc.to_record() if doc else None

    async def list_items(
        self,
        name: Optional[str] = None,
        category: Optional[str] = None,
        status: Optional[str] = None,
        include_inactive: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Item]:
        query_filters = {}
        if not include_inactive: query_filters["is_active"] = True
        if name: query_filters["name"] = {"$regex": re.escape(name), "$options": "i"}
        if category: query_filters["category"] = category
        if status: query_filters["status"] = status
        docs = await ItemDocument.find(query_filters, skip=skip, limit=limit).sort("+name").to_list()
        return [doc.to_record() for doc in docs]

    async def insert_item(self, item: Item) -> Item:
        doc = ItemDocument(**item.model_dump(exclude={"id"}))
        await doc.insert()
        logger.info(f"Item '{doc.name}' inserted with id {doc.id}.")
        return doc.to_record()

    async def update_item(self, before: Item, after: Item) -> bool:
        """Writes `after` if the stored item still has `before.version`."""
        payload = {field: getattr(after, field) for field in _ITEM_TRANSITION_FIELDS}
        payload["updated_at"] = after.updated_at
        result = await ItemDocument.get_pymongo_collection().update_one(
            {"_id": _oid(before.id), "version": before.version},
            {"$set": payload, "$inc": {"version": 1}},
        )
        if result.matched_count == 0:
            logger.warning(f"Conditional update for item {before.id} matched nothing (version {before.version}).")
            return False
        return True

    # ------------------------------------------------------------------
    # Borrow requests
    # ------------------------------------------------------------------
    async def get_request(self, request_id: str) -> Optional[BorrowRequest]:
        oid = _oid(request_id)
        if oid is None:
            return None
        doc = await BorrowRequestDocument.get(PydanticObjectId(oid))
        return doc.to_record() if doc else None

    async def insert_request(self, borrow_request: BorrowRequest) -> BorrowRequest:
        doc = BorrowRequestDocument(**borrow_request.model_dump(exclude={"id"}))
        await doc.insert()
        return doc.to_record()

    async def list_requests(
        self,
        user_id: Optional[str] = None,
        item_id: Optional[str] = None,
        statuses: Optional[List[RequestStatus]] = None,
        request_type: Optional[RequestType] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[BorrowRequest]:
        query_filters = {}
        if user_id: query_filters["user_id"] = user_id
        if item_id: query_filters["item_id"] = item_id
        if statuses: query_filters["status"] = {"$in": [RequestStatus(s).value for s in statuses]}
        if request_type: query_filters["request_type"] = RequestType(request_type).value
        docs = await BorrowRequestDocument.find(
            query_filters, skip=skip, limit=limit, sort=[("requested_at", DESCENDING)]
        ).to_list()
        return [doc.to_record() for doc in docs]

    async def list_reservation_queue(self, item_id: str) -> List[BorrowRequest]:
        """Pending reserve requests for an item, oldest first."""
        docs = await BorrowRequestDocument.find(
            {"item_id": item_id, "status": RequestStatus.PENDING.value, "request_type": RequestType.RESERVE.value},
            sort=[("requested_at", ASCENDING), ("_id", ASCENDING)],
        ).to_list()
        return [doc.to_record() for doc in docs]

    async def has_reservation_queue(self, item_id: str) -> bool:
        count = await BorrowRequestDocument.find(
            {"item_id": item_id, "status": RequestStatus.PENDING.value, "request_type": RequestType.RESERVE.value}
        ).count()
        return count > 0

    async def count_active_requests(self, item_id: str) -> int:
        return await BorrowRequestDocument.find(
            {"item_id": item_id, "status": {"$in": [s.value for s in ACTIVE_REQUEST_STATUSES]}}
        ).count()

    async def list_overdue_requests(self, now: datetime) -> List[BorrowRequest]:
        docs = await BorrowRequestDocument.find(
            {"status": RequestStatus.APPROVED.value, "expected_return_at": {"$lt": now}},
            sort=[("expected_return_at", ASCENDING)],
        ).to_list()
        return [doc.to_record() for doc in docs]

    async def apply_transition(self, transition: Transition) -> bool:
        """
        Commits a lifecycle step. The request is updated only if its status and
        type are still the ones read; the item only if its version and
        available_amount are still the ones read. Returns False on conflict.
        """
        before, after = transition.request_before, transition.request_after
        request_payload = {field: getattr(after, field) for field in _REQUEST_TRANSITION_FIELDS}
        request_payload["updated_at"] = utc_now()
        requests_collection = BorrowRequestDocument.get_pymongo_collection()
        items_collection = ItemDocument.get_pymongo_collection()

        try:
            async with self._transaction() as session:
                updated_request = await requests_collection.find_one_and_update(
                    {"_id": _oid(before.id), "status": before.status.value, "request_type": before.request_type.value},
                    {"$set": request_payload},
                    return_document=ReturnDocument.AFTER,
                    session=session,
                )
                if updated_request is None:
                    raise _TransitionConflict(f"request {before.id} is no longer '{before.status.value}'")

                if transition.item_before is not None and transition.item_after is not None:
                    item_before, item_after = transition.item_before, transition.item_after
                    item_payload = {field: getattr(item_after, field) for field in _ITEM_TRANSITION_FIELDS}
                    item_payload["updated_at"] = utc_now()
                    updated_item = await items_collection.find_one_and_update(
                        {
                            "_id": _oid(item_before.id),
                            "version": item_before.version,
                            "available_amount": item_before.available_amount,
                        },
                        {"$set": item_payload, "$inc": {"version": 1}},
                        return_document=ReturnDocument.AFTER,
                        session=session,
                    )
                    if updated_item is None:
                        if session is None:
                            # Tanpa transaksi: kembalikan status request secara manual
                            await self._revert_request(before, after)
                        raise _TransitionConflict(
                            f"item {item_before.id} changed since version {item_before.version}"
                        )
        except _TransitionConflict as conflict:
            logger.warning(f"Transition for request {before.id} not applied: {conflict}")
            return False

        logger.debug(f"Transition committed for request {before.id}: {before.status.value} -> {after.status.value}")
        return True

    async def _revert_request(self, before: BorrowRequest, after: BorrowRequest) -> bool:
        """Undoes the request write, but only while the request still holds the value written here."""
        payload = {field: getattr(before, field) for field in _REQUEST_TRANSITION_FIELDS}
        payload["updated_at"] = before.updated_at
        result = await BorrowRequestDocument.get_pymongo_collection().update_one(
            {"_id": _oid(before.id), "status": after.status.value, "request_type": after.request_type.value},
            {"$set": payload},
        )
        if result.matched_count == 0:
            logger.error(
                f"Compensating revert of request {before.id} matched nothing: it moved past "
                f"'{after.status.value}' before the revert. Check its item counters."
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    async def insert_notification(self, notification: Notification) -> Notification:
        doc = NotificationDocument(**notification.model_dump(exclude={"id"}))
        await doc.insert()
        return doc.to_record()

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        oid = _oid(notification_id)
        if oid is None:
            return None
        doc = await NotificationDocument.get(PydanticObjectId(oid))
        return doc.to_record() if doc else None

    async def list_notifications(self, user_id: str, unread_only: bool = False, skip: int = 0, limit: int = 50) -> List[Notification]:
        query_filters = {"user_id": user_id}
        if unread_only: query_filters["is_read"] = False
        docs = await NotificationDocument.find(
            query_filters, skip=skip, limit=limit, sort=[("created_at", DESCENDING)]
        ).to_list()
        return [doc.to_record() for doc in docs]

    async def count_unread_notifications(self, user_id: str) -> int:
        return await NotificationDocument.find({"user_id": user_id, "is_read": False}).count()

    async def mark_notifications_read(self, user_id: str, ids: Optional[List[str]] = None) -> int:
        query_filters = {"user_id": user_id, "is_read": False}
        if ids is not None:
            query_filters["_id"] = {"$in": [oid for oid in map(_oid, ids) if oid is not None]}
        result = await NotificationDocument.get_pymongo_collection().update_many(query_filters, {"$set": {"is_read": True}})
        return result.modified_count

    async def delete_notifications(self, user_id: str, ids: Optional[List[str]] = None, read_only: bool = False) -> int:
        query_filters = {"user_id": user_id}
        if ids is not None:
            query_filters["_id"] = {"$in": [oid for oid in map(_oid, ids) if oid is not None]}
        if read_only:
            query_filters["is_read"] = True
        result = await NotificationDocument.get_pymongo_collection().delete_many(query_filters)
        return result.deleted_count

    async def notification_exists(self, related_request_id: str, notification_type: NotificationType, since: datetime) -> bool:
        count = await NotificationDocument.find(
            {"related_request_id": related_request_id, "type": notification_type.value, "created_at": {"$gte": since}}
        ).count()
        return count > 0

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        doc = await ProfileDocument.get(profile_id)
        return doc.to_record() if doc else None

    async def upsert_profile(self, profile: Profile) -> Profile:
        now = utc_now()
        await ProfileDocument.get_pymongo_collection().update_one(
            {"_id": profile.id},
            {
                "$set": {"full_name": profile.full_name, "email": profile.email, "updated_at": now},
                "$setOnInsert": {"role": profile.role.value, "created_at": profile.created_at},
            },
            upsert=True,
        )
        return await self.get_profile(profile.id)

    async def update_profile_role(self, profile_id: str, role: ProfileRole) -> Optional[Profile]:
        result = await ProfileDocument.get_pymongo_collection().update_one(
            {"_id": profile_id}, {"$set": {"role": role.value, "updated_at": utc_now()}}
        )
        if result.matched_count == 0:
            return None
        return await self.get_profile(profile_id)

    async def list_staff(self) -> List[Profile]:
        docs = await ProfileDocument.find({"role": ProfileRole.STAFF.value}).to_list()
        return [doc.to_record() for doc in docs]


def get_repository() -> MongoRepository:
    """FastAPI dependency; overridden in tests."""
    return MongoRepository()
