"""
Bearer token verification.

Tokens are issued by the auth service; this module only checks them and
turns them into an Identity.
"""

from typing import Optional
import logging

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..config import settings
from ..database import get_db
from ..models.user import User
from ..schemas.user import TokenData, Identity

logger = logging.getLogger(__name__)

# HTTP Bearer for JWT
security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> TokenData:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")
        username: str = payload.get("username")

        if user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token payload"
            )

        # sub is a string in the token
        return TokenData(user_id=int(user_id), username=username)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials"
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID in token"
        )


async def _load_identity(token: str, db: AsyncSession) -> Identity:
    token_data = decode_token(token)

    try:
        result = await db.execute(select(User).filter(User.id == token_data.user_id))
        user = result.scalar_one_or_none()
    finally:
        # give the connection back before any assistant call is made
        await db.close()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled"
        )

    return Identity(user_id=user.id, username=user.username, assistant_id=user.assistant_id)


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Identity:
    """Get the authenticated caller."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )
    return await _load_identity(credentials.credentials, db)


async def get_identity_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[Identity]:
    """Get the caller if authenticated, otherwise None."""
    if credentials is None:
        return None

    try:
        return await _load_identity(credentials.credentials, db)
    except HTTPException as e:
        logger.info("Authentication failed, continuing without identity: %s", e.detail)
        return None
