# lending/models/profile.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field, EmailStr
from pymongo import IndexModel, ASCENDING
from datetime import datetime

from .enums import ProfileRole
from .item import utc_now


class Profile(BaseModel):
    """Profile of an identity-provider user; `id` is the token subject."""
    id: str
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: ProfileRole = ProfileRole.USER
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_staff(self) -> bool:
        return self.role == ProfileRole.STAFF

    # --- Pydantic Schemas ---
    class Upsert(BaseModel):
        full_name: Optional[str] = Field(None, max_length=200)

    class RoleUpdate(BaseModel):
        role: ProfileRole

    class Response(BaseModel):
        id: str
        full_name: Optional[str] = None
        email: Optional[EmailStr] = None
        role: ProfileRole
        created_at: datetime
        updated_at: datetime
        class Config: from_attributes=True; use_enum_values = True


class ProfileDocument(Document):
    # Gunakan subject dari identity provider sebagai _id
    id: str
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: ProfileRole = ProfileRole.USER
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "profiles"
        indexes = [
            IndexModel([("email", ASCENDING)], name="profile_email_index", sparse=True),
            IndexModel([("role", ASCENDING)], name="profile_role_index"),
        ]

    def to_record(self) -> Profile:
        return Profile.model_validate(self.model_dump(exclude={"revision_id"}))
