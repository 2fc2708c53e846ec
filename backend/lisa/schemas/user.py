"""
Identity-related Pydantic schemas.
"""

from pydantic import BaseModel
from typing import Optional


class TokenData(BaseModel):
    """Token payload data."""
    user_id: Optional[int] = None
    username: Optional[str] = None


class Identity(BaseModel):
    """
    The caller, resolved from a bearer token.

    Passed explicitly into the gateway and the history store instead of
    being read from request state.
    """
    user_id: int
    username: str
    assistant_id: Optional[str] = None

    class Config:
        frozen = True
