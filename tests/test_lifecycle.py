import asyncio

import pytest

from conftest import in_days
from lending.core.exceptions import (
    ConcurrentModificationError,
    InsufficientQuantityError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from lending.core.lifecycle import RequestLifecycleManager
from lending.models.borrow_request import BorrowRequest
from lending.models.enums import ItemStatus, NotificationType, RequestStatus, RequestType


@pytest.fixture
def manager(repository) -> RequestLifecycleManager:
    return RequestLifecycleManager(repository)


def stored_item(repository, item_id):
    return repository.items[item_id]


def assert_counts_in_range(repository):
    for item in repository.items.values():
        assert 0 <= item.available_amount <= item.amount


# --- submit ---
async def test_submit_creates_pending_request(manager, repository, camera, user):
    created = await manager.submit(camera.id, user, RequestType.BORROW, 2, "for lab")
    assert created.status == RequestStatus.PENDING
    assert created.user_id == user.id
    assert repository.requests[created.id].notes == "for lab"
    # submit tidak mengubah stok
    assert stored_item(repository, camera.id).available_amount == 5


@pytest.mark.parametrize("amount", [0, -1, 6])
async def test_submit_borrow_out_of_range(manager, camera, user, amount):
    with pytest.raises(ValidationError):
        await manager.submit(camera.id, user, RequestType.BORROW, amount)


async def test_submit_reserve_bounded_by_total_not_available(manager, repository, user):
    item = repository.seed_item(name="Tripod", amount=2, available_amount=0, status=ItemStatus.BORROWED)
    created = await manager.submit(item.id, user, RequestType.RESERVE, 2)
    assert created.request_type == RequestType.RESERVE
    with pytest.raises(ValidationError):
        await manager.submit(item.id, user, RequestType.RESERVE, 3)


async def test_submit_unknown_or_inactive_item(manager, repository, user):
    inactive = repository.seed_item(name="Old Projector", amount=1, is_active=False)
    with pytest.raises(NotFoundError):
        await manager.submit("64b000000000000000000000", user, RequestType.BORROW, 1)
    with pytest.raises(NotFoundError):
        await manager.submit(inactive.id, user, RequestType.BORROW, 1)


# --- approve ---
async def test_approve_takes_exact_units_and_notifies(manager, repository, camera, user, staff):
    created = await manager.submit(camera.id, user, RequestType.BORROW, 3)
    approved = await manager.approve(created.id, staff.id, in_days(7))

    item = stored_item(repository, camera.id)
    assert approved.status == RequestStatus.APPROVED
    assert approved.approved_by == staff.id
    assert approved.borrowed_at is not None
    assert item.available_amount == 2
    assert item.status == ItemStatus.AVAILABLE
    assert item.version == camera.version + 1
    kinds = [n.type for n in repository.notifications.values() if n.user_id == user.id]
    assert kinds == [NotificationType.ITEM_APPROVED]


async def test_approve_more_than_available_leaves_state_unchanged(manager, repository, user, staff):
    item = repository.seed_item(name="Microphone", amount=3)
    request = repository.seed_request(item_id=item.id, user_id=user.id, request_type=RequestType.BORROW, requested_amount=2)
    repository.items[item.id] = item.model_copy(update={"available_amount": 1})

    with pytest.raises(InsufficientQuantityError):
        await manager.approve(request.id, staff.id, in_days(3))

    assert repository.items[item.id].available_amount == 1
    assert repository.requests[request.id].status == RequestStatus.PENDING
    assert repository.notifications == {}


async def test_approve_requires_future_return_date(manager, camera, user, staff):
    created = await manager.submit(camera.id, user, RequestType.BORROW, 1)
    with pytest.raises(ValidationError):
        await manager.approve(created.id, staff.id, in_days(-1))


async def test_approve_twice_is_invalid_state(manager, camera, user, staff):
    created = await manager.submit(camera.id, user, RequestType.BORROW, 1)
    await manager.approve(created.id, staff.id, in_days(1))
    with pytest.raises(InvalidStateError):
        await manager.approve(created.id, staff.id, in_days(1))


async def test_concurrent_approvals_never_both_succeed(manager, repository, user, other_user, staff):
    item = repository.seed_item(name="Laptop", amount=3)
    first = await manager.submit(item.id, user, RequestType.BORROW, 2)
    second = await manager.submit(item.id, other_user, RequestType.BORROW, 2)

    results = await asyncio.gather(
        RequestLifecycleManager(repository).approve(first.id, staff.id, in_days(2)),
        RequestLifecycleManager(repository).approve(second.id, staff.id, in_days(2)),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, BorrowRequest)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (InsufficientQuantityError, ConcurrentModificationError))
    assert repository.items[item.id].available_amount == 1
    statuses = sorted(r.status.value for r in repository.requests.values())
    assert statuses == ["approved", "pending"]


async def test_retries_exhausted_raise_concurrent_modification(repository, camera, user, staff):
    created = await RequestLifecycleManager(repository).submit(camera.id, user, RequestType.BORROW, 1)

    async def always_conflict(transition):
        return False

    repository.apply_transition = always_conflict
    manager = RequestLifecycleManager(repository, max_retries=2)
    with pytest.raises(ConcurrentModificationError):
        await manager.approve(created.id, staff.id, in_days(1))


# --- reject / cancel ---
async def test_reject_pending_request(manager, repository, camera, user, staff):
    created = await manager.submit(camera.id, user, RequestType.BORROW, 1)
    rejected = await manager.reject(created.id, staff.id)
    assert rejected.status == RequestStatus.REJECTED
    assert stored_item(repository, camera.id).available_amount == 5
    assert [n.type for n in repository.notifications.values()] == [NotificationType.ITEM_REJECTED]
    with pytest.raises(InvalidStateError):
        await manager.reject(created.id, staff.id)


async def test_cancel_only_by_owner_and_only_pending(manager, repository, camera, user, other_user, staff):
    pending = await manager.submit(camera.id, user, RequestType.BORROW, 1)
    with pytest.raises(PermissionDeniedError):
        await manager.cancel(pending.id, other_user)

    cancelled = await manager.cancel(pending.id, user)
    assert cancelled.status == RequestStatus.CANCELLED

    approved = await manager.submit(camera.id, user, RequestType.BORROW, 1)
    await manager.approve(approved.id, staff.id, in_days(1))
    with pytest.raises(InvalidStateError):
        await manager.cancel(approved.id, user)

    await manager.complete(approved.id, staff.id)
    with pytest.raises(InvalidStateError):
        await manager.cancel(approved.id, user)


async def test_cancel_missing_request(manager, user):
    with pytest.raises(NotFoundError):
        await manager.cancel("64b000000000000000000001", user)


# --- complete ---
async def test_round_trip_restores_availability(manager, repository, camera, user, staff):
    before = stored_item(repository, camera.id).available_amount
    created = await manager.submit(camera.id, user, RequestType.BORROW, 4)
    await manager.approve(created.id, staff.id, in_days(5))
    completed = await manager.complete(created.id, staff.id)

    assert completed.status == RequestStatus.COMPLETED
    assert completed.returned_at is not None
    assert stored_item(repository, camera.id).available_amount == before
    with pytest.raises(InvalidStateError):
        await manager.complete(created.id, staff.id)


async def test_complete_caps_at_total_amount(manager, repository, user, staff):
    item = repository.seed_item(name="Cable", amount=4, available_amount=3)
    request = repository.seed_request(
        item_id=item.id, user_id=user.id, request_type=RequestType.BORROW, requested_amount=2,
        status=RequestStatus.APPROVED, expected_return_at=in_days(1),
    )
    await manager.complete(request.id, staff.id)
    assert repository.items[item.id].available_amount == 4


async def test_complete_pending_request_is_invalid(manager, camera, user, staff):
    created = await manager.submit(camera.id, user, RequestType.BORROW, 1)
    with pytest.raises(InvalidStateError):
        await manager.complete(created.id, staff.id)


async def test_lending_scenario(manager, repository, camera, user, other_user, staff):
    first = await manager.submit(camera.id, user, RequestType.BORROW, 3)
    assert first.status == RequestStatus.PENDING

    await manager.approve(first.id, staff.id, in_days(7))
    item = stored_item(repository, camera.id)
    assert (item.available_amount, item.status) == (2, ItemStatus.AVAILABLE)

    with pytest.raises(ValidationError):
        await manager.submit(camera.id, other_user, RequestType.BORROW, 3)

    second = await manager.submit(camera.id, other_user, RequestType.BORROW, 2)
    await manager.approve(second.id, staff.id, in_days(7))
    item = stored_item(repository, camera.id)
    assert (item.available_amount, item.status) == (0, ItemStatus.BORROWED)
    assert item.current_borrower_id == other_user.id

    await manager.complete(first.id, staff.id)
    item = stored_item(repository, camera.id)
    assert item.available_amount == 3
    assert item.status == ItemStatus.AVAILABLE
    assert item.current_borrower_id is None
    assert_counts_in_range(repository)


# --- reservation queue ---
async def test_return_promotes_reservations_in_fifo_order(manager, repository, user, other_user, staff):
    item = repository.seed_item(name="Projector", amount=3)
    loan = await manager.submit(item.id, staff, RequestType.BORROW, 3)
    await manager.approve(loan.id, staff.id, in_days(1))

    small = await manager.submit(item.id, user, RequestType.RESERVE, 1)
    big = await manager.submit(item.id, other_user, RequestType.RESERVE, 3)
    late_small = await manager.submit(item.id, user, RequestType.RESERVE, 1)

    await manager.complete(loan.id, staff.id)

    promoted = repository.requests[small.id]
    assert promoted.request_type == RequestType.BORROW
    assert promoted.status == RequestStatus.PENDING
    assert promoted.promoted_at is not None
    # Yang besar tidak muat, dan yang di belakangnya tidak boleh menyalip
    assert repository.requests[big.id].request_type == RequestType.RESERVE
    assert repository.requests[late_small.id].request_type == RequestType.RESERVE

    queued = {
        n.related_request_id: n.message for n in repository.notifications.values()
        if n.type == NotificationType.ITEM_AVAILABLE
    }
    assert "Your request is now waiting for staff approval" in queued[small.id]
    assert "number 1 in the queue" in queued[big.id]
    assert "number 2 in the queue" in queued[late_small.id]
    # Unit tidak dipotong sampai staff approve
    assert repository.items[item.id].available_amount == 3


async def test_process_queue_updates_item_status(manager, repository, user):
    item = repository.seed_item(name="Drone", amount=1, available_amount=0, status=ItemStatus.BORROWED)
    repository.seed_request(item_id=item.id, user_id=user.id, request_type=RequestType.RESERVE, requested_amount=1)

    promoted = await manager.process_reservation_queue(item.id)
    assert promoted == []
    assert repository.items[item.id].status == ItemStatus.RESERVED


# --- cancellation request ---
async def test_request_cancellation_notifies_every_staff(manager, repository, camera, user, other_user, staff):
    repository.seed_profile("staff-2", role=staff.role, full_name="Dewi Staff")
    created = await manager.submit(camera.id, user, RequestType.BORROW, 1)

    with pytest.raises(InvalidStateError):
        await manager.request_cancellation(created.id, user)

    await manager.approve(created.id, staff.id, in_days(2))
    with pytest.raises(PermissionDeniedError):
        await manager.request_cancellation(created.id, other_user)

    notified = await manager.request_cancellation(created.id, user)
    assert notified == 2
    recipients = sorted(
        n.user_id for n in repository.notifications.values() if n.type == NotificationType.CANCELLATION_REQUEST
    )
    assert recipients == ["staff-1", "staff-2"]
    assert repository.requests[created.id].status == RequestStatus.APPROVED


async def test_reservation_cannot_be_approved_before_promotion(manager, repository, user, other_user, staff):
    item = repository.seed_item(name="Lens", amount=2)
    loan = await manager.submit(item.id, staff, RequestType.BORROW, 2)
    await manager.approve(loan.id, staff.id, in_days(1))
    older = await manager.submit(item.id, user, RequestType.RESERVE, 2)
    newer = await manager.submit(item.id, other_user, RequestType.RESERVE, 1)
    repository.items[item.id] = repository.items[item.id].model_copy(update={"available_amount": 1})

    with pytest.raises(InvalidStateError):
        await manager.approve(newer.id, staff.id, in_days(1))

    assert repository.requests[newer.id].status == RequestStatus.PENDING
    assert repository.requests[older.id].request_type == RequestType.RESERVE
    assert repository.items[item.id].available_amount == 1


async def test_item_status_follows_reservation_queue(manager, repository, user, other_user, staff):
    item = repository.seed_item(name="Gimbal", amount=1)
    loan = await manager.submit(item.id, staff, RequestType.BORROW, 1)
    await manager.approve(loan.id, staff.id, in_days(1))
    assert repository.items[item.id].status == ItemStatus.BORROWED

    first = await manager.submit(item.id, user, RequestType.RESERVE, 1)
    assert repository.items[item.id].status == ItemStatus.RESERVED

    second = await manager.submit(item.id, other_user, RequestType.RESERVE, 1)
    await manager.cancel(first.id, user)
    # Masih ada satu reservasi di antrian
    assert repository.items[item.id].status == ItemStatus.RESERVED

    await manager.reject(second.id, staff.id)
    assert repository.items[item.id].status == ItemStatus.BORROWED
    assert repository.items[item.id].available_amount == 0


async def test_cancelling_only_reservation_clears_reserved_status(manager, repository, user):
    item = repository.seed_item(name="Drone", amount=1, available_amount=0, status=ItemStatus.BORROWED)
    reservation = await manager.submit(item.id, user, RequestType.RESERVE, 1)
    await manager.process_reservation_queue(item.id)
    assert repository.items[item.id].status == ItemStatus.RESERVED

    await manager.cancel(reservation.id, user)
    assert repository.items[item.id].status == ItemStatus.BORROWED
