# lending/core/security.py
from typing import Optional
import hmac
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel

from lending.core.config import AUTH_JWT_SECRET, AUTH_JWT_ALGORITHM, AUTH_JWT_AUDIENCE, INTERNAL_API_TOKEN
from lending.db.repository import get_repository
from lending.models.profile import Profile

logger = logging.getLogger(__name__)

# Token diterbitkan oleh identity provider eksternal; di sini hanya diverifikasi
bearer_scheme = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    sub: str
    email: Optional[str] = None
    full_name: Optional[str] = None


def decode_access_token(token: str) -> TokenData:
    """Verifies signature/expiry and returns the claims we use. Raises JWTError."""
    options = {"verify_aud": AUTH_JWT_AUDIENCE is not None}
    payload = jwt.decode(
        token, AUTH_JWT_SECRET, algorithms=[AUTH_JWT_ALGORITHM], audience=AUTH_JWT_AUDIENCE, options=options
    )
    subject = payload.get("sub")
    if not subject:
        raise JWTError("Subject ('sub') missing in token payload.")
    metadata = payload.get("user_metadata") or {}
    return TokenData(sub=subject, email=payload.get("email"), full_name=metadata.get("full_name"))


async def get_token_data(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenData:
    """
    Claims set by AuthMiddleware, or decoded here when the middleware did not run.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token_data: Optional[TokenData] = getattr(request.state, "token_data", None)
    if token_data is not None:
        return token_data

    if credentials is None:
        raise credentials_exception
    logger.warning("Token data not found in request state, decoding token in dependency.")
    try:
        return decode_access_token(credentials.credentials)
    except JWTError:
        logger.warning("Token decode failed in get_token_data dependency.")
        raise credentials_exception


async def get_current_profile(
    token_data: TokenData = Depends(get_token_data),
    repository = Depends(get_repository),
) -> Profile:
    """Loads the caller's profile, creating a plain `user` profile on first sight."""
    profile = await repository.get_profile(token_data.sub)
    if profile is None:
        logger.info(f"Provisioning profile for new subject '{token_data.sub}'.")
        profile = await repository.upsert_profile(Profile(
            id=token_data.sub, email=token_data.email, full_name=token_data.full_name
        ))
    return profile


async def require_staff(current_profile: Profile = Depends(get_current_profile)) -> Profile:
    if not current_profile.is_staff:
        logger.warning(f"Forbidden: profile '{current_profile.id}' with role '{current_profile.role.value}' attempted a staff action.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operation not permitted. Required role: staff"
        )
    return current_profile


def is_valid_internal_token(authorization: Optional[str]) -> bool:
    """Shared-secret check for the overdue trigger. No configured token means open."""
    if not INTERNAL_API_TOKEN:
        return True
    expected = f"Bearer {INTERNAL_API_TOKEN}"
    return hmac.compare_digest((authorization or "").encode(), expected.encode())
