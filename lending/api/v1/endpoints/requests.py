# lending/api/v1/endpoints/requests.py
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Path, Body, Query, Request
from loguru import logger

from lending.core.config import RATE_LIMIT_SUBMIT, RATE_LIMIT_STAFF_ACTIONS, RATE_LIMIT_READS
from lending.core.exceptions import NotFoundError
from lending.core.lifecycle import RequestLifecycleManager
from lending.core.rate_limiter import limiter
from lending.core.security import get_current_profile, require_staff
from lending.db.repository import get_repository
from lending.models.borrow_request import BorrowRequest, ItemRefSimple, ProfileRefSimple
from lending.models.enums import RequestStatus, RequestType
from lending.models.profile import Profile

router = APIRouter(
    tags=["Borrow & Reserve Requests"]
)


def get_lifecycle_manager(repository = Depends(get_repository)) -> RequestLifecycleManager:
    return RequestLifecycleManager(repository)


# --- Helper: request + item + profile (join) ---
async def build_request_response(repository, borrow_request: BorrowRequest) -> BorrowRequest.Response:
    response = BorrowRequest.Response.model_validate(borrow_request.model_dump())
    item = await repository.get_item(borrow_request.item_id, include_inactive=True)
    if item is not None:
        response.item = ItemRefSimple.model_validate(item.model_dump())
    else:
        logger.warning(f"Request {borrow_request.id} references missing item {borrow_request.item_id}.")
    profile = await repository.get_profile(borrow_request.user_id)
    if profile is not None:
        response.profile = ProfileRefSimple.model_validate(profile.model_dump())
    return response


async def get_visible_request_or_404(repository, request_id: str, current_profile: Profile) -> BorrowRequest:
    borrow_request = await repository.get_request(request_id)
    if borrow_request is None:
        raise NotFoundError(f"Request '{request_id}' not found.")
    if not current_profile.is_staff and borrow_request.user_id != current_profile.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden to view this request.")
    return borrow_request


# --- POST / (submit) ---
@router.post(
    "/",
    response_model=BorrowRequest.Response,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(RATE_LIMIT_SUBMIT)
async def submit_request(
    request: Request,
    request_in: BorrowRequest.Create = Body(...),
    current_profile: Profile = Depends(get_current_profile),
    manager: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    """Submit a borrow or reserve request (status: pending)."""
    logger.info(f"Profile '{current_profile.id}' submitting {request_in.request_type.value} request for item '{request_in.item_id}'.")
    created = await manager.submit(
        request_in.item_id,
        current_profile,
        request_in.request_type,
        request_in.requested_amount,
        request_in.notes,
    )
    return await build_request_response(manager.repository, created)


# --- GET / ---
@router.get(
    "/",
    response_model=List[BorrowRequest.Response],
)
@limiter.limit(RATE_LIMIT_READS)
async def read_requests(
    request: Request,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    request_status: Optional[List[RequestStatus]] = Query(None, alias="status"),
    request_type: Optional[RequestType] = Query(None),
    item_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    """Users see their own requests; staff see everything and can filter by user."""
    if not current_profile.is_staff:
        if user_id and user_id != current_profile.id:
            raise HTTPException(status_code=403, detail="Users can only view their own requests.")
        user_id = current_profile.id
    borrow_requests = await repository.list_requests(
        user_id=user_id,
        item_id=item_id,
        statuses=request_status,
        request_type=request_type,
        skip=skip,
        limit=limit,
    )
    return [await build_request_response(repository, r) for r in borrow_requests]


# --- GET /{request_id} ---
@router.get(
    "/{request_id}",
    response_model=BorrowRequest.Response,
)
async def read_request(
    request_id: str = Path(...),
    current_profile: Profile = Depends(get_current_profile),
    repository = Depends(get_repository),
):
    borrow_request = await get_visible_request_or_404(repository, request_id, current_profile)
    return await build_request_response(repository, borrow_request)


# --- PATCH /{request_id}/approve ---
@router.patch(
    "/{request_id}/approve",
    response_model=BorrowRequest.Response,
)
@limiter.limit(RATE_LIMIT_STAFF_ACTIONS)
async def approve_request(
    request: Request,
    request_id: str = Path(...),
    approval: BorrowRequest.Approve = Body(...),
    current_profile: Profile = Depends(require_staff),
    manager: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    """Approves a pending request and takes its units out of the item's availability."""
    logger.info(f"Staff '{current_profile.id}' approving request '{request_id}'.")
    approved = await manager.approve(request_id, current_profile.id, approval.expected_return_at)
    return await build_request_response(manager.repository, approved)


# --- PATCH /{request_id}/reject ---
@router.patch(
    "/{request_id}/reject",
    response_model=BorrowRequest.Response,
)
@limiter.limit(RATE_LIMIT_STAFF_ACTIONS)
async def reject_request(
    request: Request,
    request_id: str = Path(...),
    current_profile: Profile = Depends(require_staff),
    manager: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    logger.info(f"Staff '{current_profile.id}' rejecting request '{request_id}'.")
    rejected = await manager.reject(request_id, current_profile.id)
    return await build_request_response(manager.repository, rejected)


# --- PATCH /{request_id}/cancel ---
@router.patch(
    "/{request_id}/cancel",
    response_model=BorrowRequest.Response,
)
async def cancel_request(
    request_id: str = Path(...),
    current_profile: Profile = Depends(get_current_profile),
    manager: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    """Owner cancels their own pending request."""
    cancelled = await manager.cancel(request_id, current_profile)
    return await build_request_response(manager.repository, cancelled)


# --- POST /{request_id}/cancellation-request ---
@router.post(
    "/{request_id}/cancellation-request",
    status_code=status.HTTP_202_ACCEPTED,
)
async def ask_for_cancellation(
    request_id: str = Path(...),
    current_profile: Profile = Depends(get_current_profile),
    manager: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    """Owner of an approved request asks staff to cancel it."""
    notified = await manager.request_cancellation(request_id, current_profile)
    return {"message": "Cancellation request sent to staff", "request_id": request_id, "staff_notified": notified}


# --- POST /{request_id}/return ---
@router.post(
    "/{request_id}/return",
    response_model=BorrowRequest.Response,
)
@limiter.limit(RATE_LIMIT_STAFF_ACTIONS)
async def return_request(
    request: Request,
    request_id: str = Path(...),
    current_profile: Profile = Depends(require_staff),
    manager: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    """Records the return of an approved request and gives its units back."""
    logger.info(f"Staff '{current_profile.id}' processing return for request '{request_id}'.")
    completed = await manager.complete(request_id, current_profile.id)
    return await build_request_response(manager.repository, completed)
