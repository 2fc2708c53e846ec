"""
History store: per-user persistence of conversations and their messages.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import select, delete, desc, asc, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..exceptions import ChatValidationError, NotFoundError, PersistenceError
from ..models.conversation import Conversation
from ..models.message import Message
from ..models.user import User
from ..schemas.conversation import (
    ConversationDetail,
    ConversationStats,
    ConversationSummary,
    MatchingMessage,
    SearchResult,
)
from ..schemas.message import MessageIn
from .transform import DEFAULT_TITLE, derive_title, message_from_record, serialize_attachment

logger = logging.getLogger(__name__)

SEARCH_MIN_LENGTH = 2
SEARCH_SORTS = ("newest", "oldest", "relevance")
SEARCH_DATE_RANGES = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "quarter": timedelta(days=90),
    "year": timedelta(days=365),
}
SNIPPET_LENGTH = 200
EXPORT_FORMATS = ("json", "txt")


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _date_cutoff(date_range: str) -> Optional[datetime]:
    """Oldest ``updated_at`` kept by a date filter, in naive UTC like the stored timestamps."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    if date_range == "all":
        return None
    if date_range == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range in SEARCH_DATE_RANGES:
        return now - SEARCH_DATE_RANGES[date_range]
    raise ChatValidationError(f"Unknown date range: {date_range}")


@dataclass
class SaveResult:
    thread_id: str
    message_count: int
    created: bool
    appended: int


class HistoryService:
    """
    Conversations and messages scoped to one user at a time.

    Every lookup filters on both ``user_id`` and ``thread_id``; a thread owned
    by someone else is reported exactly like a thread that does not exist.
    Each call opens its own short-lived session from ``session_factory``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _find(self, db: AsyncSession, user_id: int, thread_id: str) -> Optional[Conversation]:
        result = await db.execute(
            select(Conversation).filter(
                Conversation.user_id == user_id,
                Conversation.thread_id == thread_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _ordered_messages(conversation_id: int):
        return (
            select(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at, Message.id)
        )

    # ==================== READ ====================

    async def list_conversations(
        self,
        user_id: int,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[ConversationSummary], int]:
        """Most recently updated first, with the latest message text."""
        last_message = (
            select(Message.content)
            .where(Message.conversation_id == Conversation.id)
            .order_by(desc(Message.created_at), desc(Message.id))
            .limit(1)
            .correlate(Conversation)
            .scalar_subquery()
        )

        async with self._session_factory() as db:
            result = await db.execute(
                select(Conversation, last_message)
                .filter(Conversation.user_id == user_id)
                .order_by(desc(Conversation.updated_at), desc(Conversation.id))
                .offset(offset)
                .limit(limit)
            )
            rows = result.all()

            total = await db.scalar(
                select(func.count(Conversation.id)).filter(Conversation.user_id == user_id)
            )

        summaries = [
            ConversationSummary(
                thread_id=conversation.thread_id,
                title=conversation.title,
                message_count=conversation.message_count,
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
                last_message=latest or "No messages"
            )
            for conversation, latest in rows
        ]
        return summaries, total or 0

    async def get_conversation(self, user_id: int, thread_id: str) -> ConversationDetail:
        """Conversation with its messages in creation order."""
        async with self._session_factory() as db:
            conversation = await self._find(db, user_id, thread_id)
            if conversation is None:
                raise NotFoundError("Conversation", thread_id)

            result = await db.execute(self._ordered_messages(conversation.id))
            messages = result.scalars().all()

        return ConversationDetail(
            thread_id=conversation.thread_id,
            title=conversation.title,
            message_count=conversation.message_count,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            messages=[message_from_record(m) for m in messages]
        )

    # ==================== WRITE ====================

    async def save_messages(
        self,
        user_id: int,
        thread_id: str,
        messages: Sequence[MessageIn],
        offset: Optional[int] = None,
        title: Optional[str] = None
    ) -> SaveResult:
        """
        Idempotently append ``messages`` to a conversation.

        ``offset`` is the position of ``messages[0]`` in the conversation, or
        None for "after the last stored message". Positions that are already
        stored are skipped, so resubmitting a list never duplicates rows.
        The conversation is created on first save, with its title derived from
        the first user message; an existing title is never changed.
        """
        if not thread_id:
            raise ChatValidationError("threadId is required")
        if offset is not None and offset < 0:
            raise ChatValidationError("offset must not be negative")

        try:
            return await self._save_once(user_id, thread_id, messages, offset, title)
        except IntegrityError:
            # another request created the conversation between our read and insert
            logger.info("Conversation %s for user %s created concurrently, retrying", thread_id, user_id)
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Error saving conversation",
                {"thread_id": thread_id, "reason": str(e)}
            ) from e

        try:
            return await self._save_once(user_id, thread_id, messages, offset, title)
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Error saving conversation",
                {"thread_id": thread_id, "reason": str(e)}
            ) from e

    async def _save_once(
        self,
        user_id: int,
        thread_id: str,
        messages: Sequence[MessageIn],
        offset: Optional[int],
        title: Optional[str]
    ) -> SaveResult:
        async with self._session_factory() as db:
            async with db.begin():
                conversation = await self._find(db, user_id, thread_id)
                created = conversation is None

                if created:
                    if not messages:
                        raise ChatValidationError("A conversation needs at least one message")

                    if any(m.role == "user" for m in messages):
                        new_title = derive_title(messages)
                    else:
                        new_title = (title or "").strip()[:200] or DEFAULT_TITLE

                    conversation = Conversation(
                        user_id=user_id,
                        thread_id=thread_id,
                        title=new_title,
                        message_count=0
                    )
                    db.add(conversation)
                    await db.flush()
                    stored = []
                else:
                    result = await db.execute(
                        select(Message.role, Message.content)
                        .filter(Message.conversation_id == conversation.id)
                        .order_by(Message.created_at, Message.id)
                    )
                    stored = result.all()

                start = len(stored) if offset is None else offset
                if start > len(stored):
                    logger.warning(
                        "Conversation %s has %d messages but save starts at %d, appending at the end",
                        thread_id, len(stored), start
                    )
                    start = len(stored)

                appended = 0
                for position, message in enumerate(messages, start=start):
                    if position < len(stored):
                        role, content = stored[position]
                        if (role, content) != (message.role, message.content):
                            logger.warning(
                                "Position %d of conversation %s already holds a different %s message, keeping stored one",
                                position, thread_id, role
                            )
                        continue

                    db.add(Message(
                        conversation_id=conversation.id,
                        role=message.role,
                        content=message.content,
                        attachment_blob=serialize_attachment(message.attachment),
                        tag=message.tag
                    ))
                    appended += 1

                if appended or created:
                    await db.flush()
                    conversation.message_count = await db.scalar(
                        select(func.count(Message.id)).filter(Message.conversation_id == conversation.id)
                    )
                    conversation.updated_at = func.now()

                message_count = conversation.message_count

        logger.info(
            "Saved conversation %s for user %s: %d appended, %d total%s",
            thread_id, user_id, appended, message_count, " (new)" if created else ""
        )
        return SaveResult(
            thread_id=thread_id,
            message_count=message_count,
            created=created,
            appended=appended
        )

    async def delete_conversation(self, user_id: int, thread_id: str) -> bool:
        """Delete a conversation and its messages. Returns False if there was none."""
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    conversation = await self._find(db, user_id, thread_id)
                    if conversation is None:
                        return False

                    await db.execute(
                        delete(Message).where(Message.conversation_id == conversation.id)
                    )
                    await db.delete(conversation)
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Error deleting conversation",
                {"thread_id": thread_id, "reason": str(e)}
            ) from e

        logger.info("Deleted conversation %s for user %s", thread_id, user_id)
        return True

    # ==================== STATS / SEARCH / EXPORT ====================

    async def stats(self, user_id: int) -> ConversationStats:
        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    func.count(Conversation.id),
                    func.coalesce(func.sum(Conversation.message_count), 0),
                    func.coalesce(func.avg(Conversation.message_count), 0),
                    func.min(Conversation.created_at),
                    func.max(Conversation.updated_at)
                ).filter(Conversation.user_id == user_id)
            )
            total, messages, average, first, last = result.one()

        return ConversationStats(
            total_conversations=total or 0,
            total_messages=int(messages or 0),
            avg_messages_per_conversation=round(float(average or 0), 2),
            first_conversation_date=first,
            last_activity_date=last
        )

    async def search(
        self,
        user_id: int,
        query: str,
        message_type: str = "all",
        sort: str = "newest",
        limit: int = 50,
        date_range: str = "all"
    ) -> List[SearchResult]:
        """
        Substring search over titles and message content.

        ``message_type`` narrows the rows to a role, to messages with an
        illustration ("images") or to messages about schematics or diagrams
        ("schematics"). ``date_range`` keeps conversations updated today or
        within the last week, month, quarter or year. ``sort`` is "newest",
        "oldest" or "relevance" (shortest matching message first).

        Results are grouped per conversation; only messages whose content
        matches are listed, truncated to a short snippet.
        """
        query = (query or "").strip()
        if len(query) < SEARCH_MIN_LENGTH:
            raise ChatValidationError(f"Search query must be at least {SEARCH_MIN_LENGTH} characters")
        if sort not in SEARCH_SORTS:
            raise ChatValidationError(f"Unknown sort order: {sort}")
        cutoff = _date_cutoff(date_range)

        needle = query.lower()
        pattern = _like_pattern(query)
        stmt = (
            select(
                Conversation.thread_id,
                Conversation.title,
                Conversation.updated_at,
                Conversation.message_count,
                Message.role,
                Message.content,
                Message.created_at
            )
            .join(Message, Message.conversation_id == Conversation.id)
            .filter(
                Conversation.user_id == user_id,
                or_(
                    Conversation.title.ilike(pattern, escape="\\"),
                    Message.content.ilike(pattern, escape="\\")
                )
            )
        )

        if message_type in ("user", "assistant"):
            stmt = stmt.filter(Message.role == message_type)
        elif message_type == "images":
            stmt = stmt.filter(Message.attachment_blob.isnot(None))
        elif message_type == "schematics":
            stmt = stmt.filter(or_(
                Message.content.ilike("%schematic%"),
                Message.content.ilike("%diagram%")
            ))
        elif message_type != "all":
            raise ChatValidationError(f"Unknown message type: {message_type}")

        if cutoff is not None:
            stmt = stmt.filter(Conversation.updated_at >= cutoff)

        if sort == "oldest":
            stmt = stmt.order_by(asc(Conversation.updated_at), Message.created_at, Message.id)
        elif sort == "relevance":
            stmt = stmt.order_by(func.length(Message.content), desc(Conversation.updated_at), Message.id)
        else:
            stmt = stmt.order_by(desc(Conversation.updated_at), Message.created_at, Message.id)

        async with self._session_factory() as db:
            result = await db.execute(stmt.limit(limit))
            rows = result.all()

        grouped: Dict[str, SearchResult] = {}
        for thread_id, title, updated_at, count, role, content, created_at in rows:
            entry = grouped.get(thread_id)
            if entry is None:
                entry = grouped[thread_id] = SearchResult(
                    thread_id=thread_id,
                    title=title,
                    updated_at=updated_at,
                    message_count=count
                )
            content = content or ""
            if needle in content.lower():
                snippet = content[:SNIPPET_LENGTH] + ("..." if len(content) > SNIPPET_LENGTH else "")
                entry.matching_messages.append(
                    MatchingMessage(role=role, content=snippet, created_at=created_at)
                )

        return list(grouped.values())

    async def export_conversation(
        self,
        user_id: int,
        thread_id: str,
        fmt: str = "json"
    ) -> Union[Dict[str, Any], str]:
        """Export as a JSON-able document or a plain-text transcript."""
        if fmt not in EXPORT_FORMATS:
            raise ChatValidationError("Unsupported export format")

        async with self._session_factory() as db:
            conversation = await self._find(db, user_id, thread_id)
            if conversation is None:
                raise NotFoundError("Conversation", thread_id)

            username = await db.scalar(select(User.username).filter(User.id == user_id))
            result = await db.execute(self._ordered_messages(conversation.id))
            messages = [message_from_record(m) for m in result.scalars().all()]

        header = {
            "threadId": conversation.thread_id,
            "title": conversation.title,
            "username": username,
            "createdAt": conversation.created_at,
            "updatedAt": conversation.updated_at,
            "messageCount": conversation.message_count
        }

        if fmt == "json":
            return {
                "conversation": header,
                "messages": [m.model_dump(mode="json", by_alias=True) for m in messages]
            }

        lines = [
            f"Conversation: {conversation.title}",
            f"User: {username}",
            f"Created: {conversation.created_at}",
            f"Messages: {conversation.message_count}",
            "",
            "=" * 50,
            ""
        ]
        for message in messages:
            lines.append(f"[{message.created_at}] {message.role.upper()}:")
            lines.append(message.content)
            lines.append("")
        return "\n".join(lines)
