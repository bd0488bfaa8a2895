# lending/core/lifecycle.py
"""
Borrow/reserve request lifecycle.

    pending  -> approved | rejected | cancelled
    approved -> completed

Every transition that touches item counters is committed through
``repository.apply_transition``, a conditional write on the values read here.
When the write loses a race the request and item are read again and every
precondition is checked again, so a racing approval that no longer fits fails
with InsufficientQuantityError instead of over-allocating units.
"""
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from loguru import logger

from lending.core import availability
from lending.core.config import LIFECYCLE_MAX_RETRIES
from lending.core.exceptions import (
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from lending.core.notifications import NotificationService
from lending.models.borrow_request import BorrowRequest
from lending.models.enums import RequestStatus, RequestType
from lending.models.item import Item
from lending.models.profile import Profile
from lending.models.transition import Transition


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class RequestLifecycleManager:
    def __init__(self, repository, notifications: Optional[NotificationService] = None, max_retries: int = LIFECYCLE_MAX_RETRIES):
        self.repository = repository
        self.notifications = notifications or NotificationService(repository)
        self.max_retries = max(1, max_retries)

    # --- Helpers ---
    async def _load(self, request_id: str) -> Tuple[BorrowRequest, Item]:
        borrow_request = await self.repository.get_request(request_id)
        if borrow_request is None:
            raise NotFoundError(f"Request '{request_id}' not found.")
        item = await self.repository.get_item(borrow_request.item_id, include_inactive=True)
        if item is None:
            raise NotFoundError(f"Item '{borrow_request.item_id}' referenced by request '{request_id}' not found.")
        return borrow_request, item

    @staticmethod
    def _expect_status(borrow_request: BorrowRequest, expected: RequestStatus, action: str) -> None:
        if borrow_request.status != expected:
            raise InvalidStateError(
                f"Cannot {action} request '{borrow_request.id}': status is '{borrow_request.status.value}', "
                f"expected '{expected.value}'."
            )

    async def _refresh_item_status(self, item_id: str) -> None:
        """Re-derives available/borrowed/reserved after the reservation queue changed."""
        for _ in range(self.max_retries):
            item = await self.repository.get_item(item_id, include_inactive=True)
            if item is None:
                return
            has_queue = await self.repository.has_reservation_queue(item.id)
            expected_status = availability.derive_item_status(item.available_amount, has_queue)
            if expected_status == item.status:
                return
            if await self.repository.update_item(item, item.model_copy(update={
                "status": expected_status, "updated_at": datetime.now(timezone.utc)
            })):
                logger.info(f"Item '{item.name}' status {item.status.value} -> {expected_status.value}.")
                return
        # Transisi request sudah tersimpan; status diperbaiki lagi pada perubahan berikutnya
        logger.warning(f"Could not refresh status of item {item_id}: it kept changing.")

    async def _commit(self, transition: Transition) -> bool:
        if transition.item_after is not None:
            transition.item_after.updated_at = transition.request_after.updated_at
        return await self.repository.apply_transition(transition)

    # ------------------------------------------------------------------
    # submit
    # ------------------------------------------------------------------
    async def submit(
        self,
        item_id: str,
        user: Profile,
        request_type: RequestType,
        requested_amount: int,
        notes: Optional[str] = None,
    ) -> BorrowRequest:
        item = await self.repository.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Active item with ID '{item_id}' not found.")
        availability.validate_requested_amount(item, request_type, requested_amount)

        created = await self.repository.insert_request(BorrowRequest(
            item_id=item.id,
            user_id=user.id,
            request_type=request_type,
            requested_amount=requested_amount,
            notes=notes,
        ))
        logger.info(
            f"User '{user.id}' submitted {request_type.value} request {created.id} "
            f"for {requested_amount} unit(s) of item '{item.name}'."
        )
        if request_type == RequestType.RESERVE:
            await self._refresh_item_status(item.id)
        return created

    # ------------------------------------------------------------------
    # approve
    # ------------------------------------------------------------------
    async def approve(self, request_id: str, staff_id: str, expected_return_at: datetime) -> BorrowRequest:
        expected_return_at = _utc(expected_return_at)
        for attempt in range(1, self.max_retries + 1):
            borrow_request, item = await self._load(request_id)
            self._expect_status(borrow_request, RequestStatus.PENDING, "approve")
            if borrow_request.request_type == RequestType.RESERVE:
                raise InvalidStateError(
                    f"Request '{request_id}' is a reservation; it is approved only after the reservation queue promotes it."
                )

            now = datetime.now(timezone.utc)
            if expected_return_at <= now:
                raise ValidationError("Expected return date must be in the future.")
            if not item.is_active:
                raise InvalidStateError(f"Item '{item.name}' is no longer active.")

            # Antrian reservasi lain (selain request ini) menentukan status 'reserved'
            queue = await self.repository.list_reservation_queue(item.id)
            others_queued = any(queued.id != borrow_request.id for queued in queue)
            # Re-check ketersediaan saat commit (tidak di-clamp)
            item_after = availability.checkout_units(
                item, borrow_request.requested_amount, borrow_request.user_id, others_queued
            )
            request_after = borrow_request.model_copy(update={
                "status": RequestStatus.APPROVED,
                "approved_at": now,
                "approved_by": staff_id,
                "borrowed_at": now,
                "expected_return_at": expected_return_at,
                "updated_at": now,
            })
            if await self._commit(Transition(
                request_before=borrow_request, request_after=request_after, item_before=item, item_after=item_after
            )):
                logger.info(
                    f"Request {request_id} approved by '{staff_id}': item '{item.name}' "
                    f"available {item.available_amount} -> {item_after.available_amount}."
                )
                await self.notifications.request_approved(request_after, item_after)
                return request_after
            logger.warning(f"Approve of request {request_id} lost a race (attempt {attempt}/{self.max_retries}).")

        raise ConcurrentModificationError(
            f"Request '{request_id}' could not be approved: the item kept changing. Please try again."
        )

    # ------------------------------------------------------------------
    # reject / cancel
    # ------------------------------------------------------------------
    async def reject(self, request_id: str, staff_id: Optional[str] = None) -> BorrowRequest:
        for _ in range(1, self.max_retries + 1):
            borrow_request, item = await self._load(request_id)
            self._expect_status(borrow_request, RequestStatus.PENDING, "reject")
            request_after = borrow_request.model_copy(update={
                "status": RequestStatus.REJECTED, "updated_at": datetime.now(timezone.utc)
            })
            if await self._commit(Transition(request_before=borrow_request, request_after=request_after)):
                logger.info(f"Request {request_id} rejected by '{staff_id}'.")
                if borrow_request.request_type == RequestType.RESERVE:
                    await self._refresh_item_status(borrow_request.item_id)
                await self.notifications.request_rejected(request_after, item)
                return request_after
        raise ConcurrentModificationError(f"Request '{request_id}' changed while being rejected.")

    async def cancel(self, request_id: str, requesting_user: Profile) -> BorrowRequest:
        for _ in range(1, self.max_retries + 1):
            borrow_request = await self.repository.get_request(request_id)
            if borrow_request is None:
                raise NotFoundError(f"Request '{request_id}' not found.")
            if borrow_request.user_id != requesting_user.id:
                raise PermissionDeniedError("Only the owner of a request can cancel it.")
            self._expect_status(borrow_request, RequestStatus.PENDING, "cancel")
            request_after = borrow_request.model_copy(update={
                "status": RequestStatus.CANCELLED, "updated_at": datetime.now(timezone.utc)
            })
            if await self._commit(Transition(request_before=borrow_request, request_after=request_after)):
                logger.info(f"Request {request_id} cancelled by its owner '{requesting_user.id}'.")
                if borrow_request.request_type == RequestType.RESERVE:
                    await self._refresh_item_status(borrow_request.item_id)
                return request_after
        raise ConcurrentModificationError(f"Request '{request_id}' changed while being cancelled.")

    async def request_cancellation(self, request_id: str, requesting_user: Profile) -> int:
        """Owner of an approved request asks staff to cancel it. Returns how many staff were notified."""
        borrow_request, item = await self._load(request_id)
        if borrow_request.user_id != requesting_user.id:
            raise PermissionDeniedError("Only the owner of a request can ask for its cancellation.")
        self._expect_status(borrow_request, RequestStatus.APPROVED, "request cancellation of")
        requester_name = requesting_user.full_name or requesting_user.email or requesting_user.id
        staff_members = await self.repository.list_staff()
        for staff in staff_members:
            await self.notifications.cancellation_requested(staff.id, borrow_request, item, requester_name)
        logger.info(f"Cancellation of request {request_id} requested by '{requesting_user.id}'; {len(staff_members)} staff notified.")
        return len(staff_members)

    # ------------------------------------------------------------------
    # complete (return)
    # ------------------------------------------------------------------
    async def complete(self, request_id: str, staff_id: Optional[str] = None) -> BorrowRequest:
        for attempt in range(1, self.max_retries + 1):
            borrow_request, item = await self._load(request_id)
            self._expect_status(borrow_request, RequestStatus.APPROVED, "complete")

            now = datetime.now(timezone.utc)
            has_queue = await self.repository.has_reservation_queue(item.id)
            item_after = availability.return_units(item, borrow_request.requested_amount, has_queue)
            request_after = borrow_request.model_copy(update={
                "status": RequestStatus.COMPLETED, "returned_at": now, "updated_at": now
            })
            if await self._commit(Transition(
                request_before=borrow_request, request_after=request_after, item_before=item, item_after=item_after
            )):
                logger.info(
                    f"Request {request_id} returned (processed by '{staff_id}'): item '{item.name}' "
                    f"available {item.available_amount} -> {item_after.available_amount}."
                )
                if has_queue:
                    await self.process_reservation_queue(item.id)
                return request_after
            logger.warning(f"Return of request {request_id} lost a race (attempt {attempt}/{self.max_retries}).")

        raise ConcurrentModificationError(f"Request '{request_id}' could not be completed. Please try again.")

    # ------------------------------------------------------------------
    # reservation queue
    # ------------------------------------------------------------------
    async def process_reservation_queue(self, item_id: str) -> List[BorrowRequest]:
        """
        Promotes pending reservations (oldest first) to borrow requests while
        they fit in the free units. The first reservation that does not fit
        stops promotion; it and everything behind it get their queue position.
        """
        item = await self.repository.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Active item with ID '{item_id}' not found.")

        queue = await self.repository.list_reservation_queue(item.id)
        remaining = item.available_amount
        promoted: List[BorrowRequest] = []
        blocked = False
        position = 0

        for reservation in queue:
            if not blocked and reservation.requested_amount <= remaining:
                now = datetime.now(timezone.utc)
                request_after = reservation.model_copy(update={
                    "request_type": RequestType.BORROW, "promoted_at": now, "updated_at": now
                })
                if not await self._commit(Transition(request_before=reservation, request_after=request_after)):
                    # Sudah dibatalkan/diubah di tempat lain, lewati
                    logger.info(f"Reservation {reservation.id} changed during queue processing; skipped.")
                    continue
                remaining -= reservation.requested_amount
                promoted.append(request_after)
                await self.notifications.reservation_available(request_after, item)
                continue

            blocked = True
            position += 1
            await self.notifications.reservation_queued(reservation, item, position)

        if promoted or queue:
            logger.info(
                f"Reservation queue for item '{item.name}': {len(promoted)} promoted, "
                f"{position} still waiting, {remaining} unit(s) unclaimed."
            )

        # Status item diturunkan ulang dari antrian yang tersisa
        await self._refresh_item_status(item.id)
        return promoted
