# lending/api/v1/endpoints/items.py
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Path, Body, Query, Request
from datetime import datetime, timezone
import logging

from lending.core import availability
from lending.core.exceptions import ConcurrentModificationError, InvalidStateError, NotFoundError
from lending.core.lifecycle import RequestLifecycleManager
from lending.core.rate_limiter import limiter
from lending.core.config import RATE_LIMIT_READS, RATE_LIMIT_STAFF_ACTIONS
from lending.core.security import get_current_profile, require_staff
from lending.db.repository import get_repository
from lending.models.borrow_request import BorrowRequest
from lending.models.enums import ItemStatus
from lending.models.item import Item
from lending.models.profile import Profile

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Items"]
)


async def get_item_or_404(repository, item_id: str, include_inactive: bool = False) -> Item:
    """Retrieves an item by id; inactive items count as missing unless asked for."""
    item = await repository.get_item(item_id, include_inactive=include_inactive)
    if item is None:
        logger.info(f"Item lookup failed for ID '{item_id}'.")
        raise NotFoundError(f"Active item with ID '{item_id}' not found.")
    return item


def validate_item_response(item: Item) -> Item.Response:
    return Item.Response.model_validate(item.model_dump())


# --- POST /items/ ---
@router.post(
    "/",
    response_model=Item.Response,
    status_code=status.HTTP_201_CREATED,
)
async def create_item(
    item_in: Item.Create = Body(...),
    current_profile: Profile = Depends(require_staff),
    repository = Depends(get_repository),
):
    """Create an item; every unit starts out available."""
    item_data = item_in.model_dump(exclude={"image_url"})
    item_obj = Item(
        **item_data,
        image_url=str(item_in.image_url) if item_in.image_url else None,
        available_amount=item_in.amount,
        status=ItemStatus.AVAILABLE,
    )
    created_item = await repository.insert_item(item_obj)
    logger.info(f"Item '{created_item.name}' ({created_item.amount} units) created by '{current_profile.id}'.")
    return validate_item_response(created_item)


# --- GET /items/ ---
@router.get(
    "/",
    response_model=List[Item.Response],
)
@limiter.limit(RATE_LIMIT_READS)
async def read_items(
    request: Request,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    name: Optional[str] = Query(None, description="Filter by item name (case-insensitive partial match)"),
    category: Optional[str] = Query(None, description="Filter by exact category"),
    item_status: Optional[ItemStatus] = Query(None, alias="status", description="Filter by availability status"),
    include_inactive: bool = Query(False, description="Staff only: include soft-deleted items"),
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    """List items with optional filtering and pagination."""
    if include_inactive and not current_profile.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only staff can list inactive items.")
    items = await repository.list_items(
        name=name,
        category=category,
        status=item_status.value if item_status else None,
        include_inactive=include_inactive,
        skip=skip,
        limit=limit,
    )
    return [validate_item_response(item) for item in items]


# --- GET /items/{item_id} ---
@router.get(
    "/{item_id}",
    response_model=Item.Response,
)
async def read_item(
    item_id: str = Path(..., description="The ID of the item to retrieve"),
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    item = await get_item_or_404(repository, item_id, include_inactive=current_profile.is_staff)
    return validate_item_response(item)


# --- PUT /items/{item_id} ---
@router.put(
    "/{item_id}",
    response_model=Item.Response,
)
@limiter.limit(RATE_LIMIT_STAFF_ACTIONS)
async def update_item(
    request: Request,
    item_id: str = Path(..., description="The ID of the item to update"),
    item_in: Item.Update = Body(...),
    current_profile: Profile = Depends(require_staff),
    repository = Depends(get_repository),
):
    """
    Update item details. Changing `amount` moves `available_amount` by the
    same delta; units currently on loan are never given back by an edit.
    """
    update_data = item_in.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="No update data provided.")
    if update_data.get("image_url") is not None:
        update_data["image_url"] = str(update_data["image_url"])

    item = await get_item_or_404(repository, item_id, include_inactive=True)
    new_amount = update_data.pop("amount", None)
    if update_data.get("is_active") is False and item.is_active:
        raise HTTPException(status_code=400, detail="Use DELETE to deactivate an item.")

    updated = item.model_copy(update={**update_data, "updated_at": datetime.now(timezone.utc)})
    if new_amount is not None and new_amount != item.amount:
        has_queue = await repository.has_reservation_queue(item.id)
        updated = availability.resize_item(updated, new_amount, has_queue)

    if not await repository.update_item(item, updated):
        raise ConcurrentModificationError(f"Item '{item.name}' was modified by someone else. Reload and try again.")
    logger.info(f"Item '{item.name}' (ID: {item_id}) updated by '{current_profile.id}'. Fields: {list(item_in.model_dump(exclude_unset=True).keys())}")

    refreshed = await get_item_or_404(repository, item_id, include_inactive=True)
    return validate_item_response(refreshed)


# --- DELETE /items/{item_id} ---
@router.delete(
    "/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_item(
    item_id: str = Path(..., description="The ID of the item to mark as inactive"),
    current_profile: Profile = Depends(require_staff),
    repository = Depends(get_repository),
):
    """
    Soft delete. Refused while any pending or approved request references the item.
    Idempotent for items that are already inactive.
    """
    item = await get_item_or_404(repository, item_id, include_inactive=True)
    if not item.is_active:
        logger.info(f"Item '{item_id}' is already inactive. No action taken.")
        return None

    active_requests = await repository.count_active_requests(item.id)
    if active_requests:
        raise InvalidStateError(
            f"Cannot delete item '{item.name}': {active_requests} pending/approved request(s) still reference it."
        )

    deactivated = item.model_copy(update={"is_active": False, "updated_at": datetime.now(timezone.utc)})
    if not await repository.update_item(item, deactivated):
        raise ConcurrentModificationError(f"Item '{item.name}' was modified by someone else. Reload and try again.")
    logger.info(f"Item '{item.name}' (ID: {item_id}) marked as inactive by '{current_profile.id}'.")
    return None


# --- POST /items/{item_id}/reservation-queue ---
@router.post(
    "/{item_id}/reservation-queue",
    response_model=List[BorrowRequest.Response],
)
async def process_item_reservation_queue(
    item_id: str = Path(...),
    current_profile: Profile = Depends(require_staff),
    repository = Depends(get_repository),
):
    """Promote waiting reservations that fit in the free units (FIFO)."""
    manager = RequestLifecycleManager(repository)
    promoted = await manager.process_reservation_queue(item_id)
    logger.info(f"Reservation queue for item {item_id} processed by '{current_profile.id}': {len(promoted)} promoted.")
    return [BorrowRequest.Response.model_validate(r.model_dump()) for r in promoted]
