"""
Conversation database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Conversation(Base):
    """One external assistant thread as seen by one user."""

    __tablename__ = "conversations"

    __table_args__ = (
        # thread ids are only unique per user
        UniqueConstraint("user_id", "thread_id", name="uq_conversations_user_thread"),
        # listing by user ordered by recency
        Index("ix_conversations_user_updated", "user_id", "updated_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    thread_id = Column(String(100), nullable=False)

    title = Column(String(200), nullable=False)
    message_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="(Message.created_at, Message.id)"
    )
