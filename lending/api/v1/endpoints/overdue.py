# lending/api/v1/endpoints/overdue.py
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger

from lending.core.overdue import scan_overdue
from lending.core.security import is_valid_internal_token
from lending.db.repository import get_repository

router = APIRouter(
    tags=["Internal"]
)


@router.post("/check-overdue")
async def trigger_overdue_check(request: Request, repository = Depends(get_repository)):
    """Re-runs the overdue scan. Guarded by the INTERNAL_API_TOKEN shared secret."""
    if not is_valid_internal_token(request.headers.get("Authorization")):
        logger.warning("Overdue trigger called with an invalid internal token.")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    try:
        notified = await scan_overdue(repository)
    except Exception as e:
        logger.exception(f"Error in overdue check trigger: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to check overdue items"})
    return {"message": "Successfully checked for overdue items", "notified": notified}


@router.get("/check-overdue")
async def describe_overdue_check():
    return {"message": "Overdue items check endpoint. Use POST to trigger check."}
