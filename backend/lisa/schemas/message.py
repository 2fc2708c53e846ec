"""
Message-related Pydantic schemas.
"""

from pydantic import BaseModel, Field, AliasChoices
from pydantic.alias_generators import to_camel
from typing import Optional, Literal
from datetime import datetime


class Attachment(BaseModel):
    """Reference to a technical illustration shown alongside a reply."""
    name: str
    display_name: Optional[str] = None
    filename: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    type: str = "trainPart"

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ChatRequest(BaseModel):
    """Schema for sending a chat message."""
    message: str
    thread_id: Optional[str] = None  # If None, a new thread is started

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ChatResponse(BaseModel):
    """Reply to a chat message."""
    message: str
    thread_id: str
    attachment: Optional[Attachment] = None
    tag: Optional[str] = None
    # Set when the reply was delivered but could not be saved
    warning: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class MessageIn(BaseModel):
    """A message submitted for saving."""
    role: Literal["user", "assistant"]
    content: str = ""
    attachment: Optional[Attachment] = Field(
        None,
        validation_alias=AliasChoices("attachment", "trainPart")
    )
    tag: Optional[str] = Field(
        None,
        max_length=50,
        validation_alias=AliasChoices("tag", "assistantType", "assistant_type")
    )

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class MessageResponse(BaseModel):
    """Message as returned to clients."""
    role: Literal["user", "assistant"]
    content: str
    attachment: Optional[Attachment] = None
    tag: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True
