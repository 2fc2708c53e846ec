"""
Message database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Message(Base):
    """A single turn in a conversation."""

    __tablename__ = "messages"

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)

    role = Column(String(20), nullable=False)  # "user", "assistant"
    content = Column(Text, nullable=False, default="")

    # Serialized illustration reference, may be missing or unreadable
    attachment_blob = Column(Text, nullable=True)
    # Which assistant persona answered ("personal", "default")
    tag = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
