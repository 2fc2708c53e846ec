"""
Conversation-related Pydantic schemas.
"""

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime

from .message import MessageIn, MessageResponse


class _CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class ConversationSummary(_CamelModel):
    """Schema for conversation list item."""
    thread_id: str
    title: str
    message_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_message: Optional[str] = None


class ConversationListResponse(_CamelModel):
    conversations: List[ConversationSummary]
    total: int


class ConversationDetail(_CamelModel):
    """Conversation with full message history."""
    thread_id: str
    title: str
    message_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    messages: List[MessageResponse] = []


class ConversationDetailResponse(_CamelModel):
    conversation: ConversationDetail


class SaveConversationRequest(_CamelModel):
    """Body of a history save."""
    thread_id: str = Field(..., min_length=1, max_length=100)
    title: Optional[str] = Field(None, max_length=200)
    messages: List[MessageIn]


class SaveConversationResponse(_CamelModel):
    message: str
    thread_id: str
    message_count: int
    created: bool


class ConversationStats(_CamelModel):
    total_conversations: int
    total_messages: int
    avg_messages_per_conversation: float
    first_conversation_date: Optional[datetime] = None
    last_activity_date: Optional[datetime] = None


class MatchingMessage(_CamelModel):
    role: str
    content: str
    created_at: Optional[datetime] = None


class SearchResult(_CamelModel):
    thread_id: str
    title: str
    updated_at: Optional[datetime] = None
    message_count: int
    matching_messages: List[MatchingMessage] = []


class SearchResponse(_CamelModel):
    results: List[SearchResult]
    total: int
    query: str

