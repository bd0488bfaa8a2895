# lending/api/v1/endpoints/profiles.py
from fastapi import APIRouter, Depends, HTTPException, status, Path, Body
from loguru import logger

from lending.core.security import TokenData, get_current_profile, get_token_data, require_staff
from lending.db.repository import get_repository
from lending.models.profile import Profile

router = APIRouter(
    tags=["Profiles"]
)


def validate_profile_response(profile: Profile) -> Profile.Response:
    return Profile.Response.model_validate(profile.model_dump())


@router.get("/me", response_model=Profile.Response)
async def read_my_profile(current_profile: Profile = Depends(get_current_profile)):
    return validate_profile_response(current_profile)


@router.put("/me", response_model=Profile.Response)
async def upsert_my_profile(
    profile_in: Profile.Upsert = Body(...),
    token_data: TokenData = Depends(get_token_data),
    repository = Depends(get_repository),
):
    """Creates or updates the caller's profile. Role is never changed here."""
    existing = await repository.get_profile(token_data.sub)
    profile = Profile(
        id=token_data.sub,
        full_name=profile_in.full_name if profile_in.full_name is not None else (existing.full_name if existing else token_data.full_name),
        email=token_data.email or (existing.email if existing else None),
    )
    saved = await repository.upsert_profile(profile)
    logger.info(f"Profile '{saved.id}' saved.")
    return validate_profile_response(saved)


@router.patch("/{profile_id}/role", response_model=Profile.Response)
async def update_profile_role(
    profile_id: str = Path(...),
    role_in: Profile.RoleUpdate = Body(...),
    current_profile: Profile = Depends(require_staff),
    repository = Depends(get_repository),
):
    if profile_id == current_profile.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Staff cannot change their own role.")
    updated = await repository.update_profile_role(profile_id, role_in.role)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Profile '{profile_id}' not found.")
    logger.info(f"Role of profile '{profile_id}' set to '{role_in.role.value}' by '{current_profile.id}'.")
    return validate_profile_response(updated)
