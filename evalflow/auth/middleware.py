"""API key authentication - resolves the caller and their capabilities."""

import hashlib
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from evalflow.config import settings
from evalflow.database import get_db
from evalflow.engine.permissions import Caller
from evalflow.storage.repositories import get_user_by_api_key_hash


API_KEY_HEADER = APIKeyHeader(name="Authorization", auto_error=False)


def hash_api_key(api_key: str) -> str:
    """Hash API key with salt for storage/lookup."""
    return hashlib.sha256(
        f"{settings.api_key_hash_salt}:{api_key}".encode()
    ).hexdigest()


async def get_caller_from_bearer(
    db: Annotated[AsyncSession, Depends(get_db)],
    auth_header: str | None = Depends(API_KEY_HEADER),
) -> Caller:
    """Extract the calling user from a Bearer token (API key).

    Roles are mapped to capabilities here, once per request.
    """
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )
    api_key = auth_header[7:].strip()
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )
    user = await get_user_by_api_key_hash(db, hash_api_key(api_key))
    if not user:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
    return Caller.from_roles(user.user_id, user.roles or [], name=user.name)


# Type alias for dependency injection
CallerDep = Annotated[Caller, Depends(get_caller_from_bearer)]
