"""
Client-side state for the conversation currently on screen.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..exceptions import ChatError, ChatValidationError
from ..schemas.message import Attachment, MessageResponse
from .api import ChatApiClient

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    COMPOSING = "composing"
    AWAITING_REPLY = "awaiting_reply"


class MessageStatus(str, Enum):
    PENDING = "pending"        # sent, not yet answered
    CONFIRMED = "confirmed"
    FAILED = "failed"          # the send did not go through
    ERROR = "error"            # synthetic assistant message describing a failure


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    attachment: Optional[Attachment] = None
    tag: Optional[str] = None
    status: MessageStatus = MessageStatus.CONFIRMED
    created_at: Optional[datetime] = None

    @classmethod
    def from_response(cls, message: MessageResponse) -> "ChatMessage":
        return cls(
            role=message.role,
            content=message.content,
            attachment=message.attachment,
            tag=message.tag,
            created_at=message.created_at
        )


class ChatSession:
    """
    Messages, thread pointer, draft and request state for one chat view.

    Responses are matched to the view they were requested for: navigating to
    another conversation (or closing the session) makes any reply still in
    flight stale, and stale replies are dropped instead of applied.
    """

    def __init__(self, api: ChatApiClient):
        self.api = api
        self.messages: List[ChatMessage] = []
        self.thread_id: Optional[str] = None
        self.draft = ""
        self.state = SessionState.IDLE
        self.error: Optional[str] = None
        self.warnings: List[str] = []
        self._generation = 0
        self._load_ticket = 0
        self._closed = False

    @property
    def in_flight(self) -> bool:
        return self.state is SessionState.AWAITING_REPLY

    @property
    def closed(self) -> bool:
        return self._closed

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _navigate(self):
        self._generation += 1
        self._load_ticket += 1

    def update_draft(self, text: str):
        self.draft = text
        if self.state is not SessionState.AWAITING_REPLY:
            self._settle_state()

    def start_new_conversation(self):
        """Forget the current conversation, including any unsent draft."""
        self._navigate()
        self.messages = []
        self.thread_id = None
        self.draft = ""
        self.error = None
        self.state = SessionState.IDLE

    async def load_conversation(self, thread_id: str) -> bool:
        """
        Replace local state with a saved conversation.

        NotFoundError and InvalidPayloadError propagate and leave the current
        state as it was. Returns False if the view moved on before the
        history arrived.
        """
        self._load_ticket += 1
        ticket = self._load_ticket

        response = await self.api.get_history(thread_id)

        if self._closed or ticket != self._load_ticket:
            logger.debug("Dropping history for %s, view has changed", thread_id)
            return False

        conversation = response.conversation
        self._generation += 1
        self.messages = [ChatMessage.from_response(m) for m in conversation.messages]
        self.thread_id = conversation.thread_id
        self.draft = ""
        self.error = None
        self.state = SessionState.IDLE
        return True

    def _swap(self, old: ChatMessage, new: ChatMessage):
        for i, message in enumerate(self.messages):
            if message is old:
                self.messages[i] = new
                return
        self.messages.append(new)

    def _settle_state(self):
        self.state = SessionState.COMPOSING if self.draft.strip() else SessionState.IDLE

    async def send_message(self, text: Optional[str] = None) -> Optional[ChatMessage]:
        """
        Send ``text`` (the draft by default) and append the reply.

        The user message is shown at once as PENDING and replaced by a
        CONFIRMED copy when the reply arrives. On failure it is marked FAILED
        and an ERROR assistant message carries the reason; the thread pointer
        is left alone. A cancelled send is marked FAILED and the cancellation
        propagates. Returns the assistant message, or None on failure or
        when the reply went stale.
        """
        from_draft = text is None
        text = self.draft if from_draft else text
        if not text or not text.strip():
            raise ChatValidationError("Message cannot be empty")
        if self.in_flight:
            raise ChatValidationError("Wait for the current reply before sending another message")

        generation = self._generation
        pending = ChatMessage(role="user", content=text, status=MessageStatus.PENDING)
        self.messages.append(pending)
        if from_draft:
            self.draft = ""
        self.error = None
        self.state = SessionState.AWAITING_REPLY

        try:
            response = await self.api.send_message(text, self.thread_id)
        except asyncio.CancelledError:
            if not self._is_stale(generation):
                logger.info("Send cancelled before a reply arrived")
                self._swap(pending, replace(pending, status=MessageStatus.FAILED))
                self._settle_state()
            raise
        except ChatError as e:
            if self._is_stale(generation):
                logger.debug("Dropping failed reply for a view that has changed: %s", e.message)
                return None
            logger.warning("Send failed: %s", e.message)
            self._swap(pending, replace(pending, status=MessageStatus.FAILED))
            self.messages.append(ChatMessage(
                role="assistant",
                content=f"Error: {e.message}",
                status=MessageStatus.ERROR
            ))
            self.error = e.message
            self._settle_state()
            return None

        if self._is_stale(generation):
            logger.debug("Dropping reply for thread %s, view has changed", response.thread_id)
            return None

        self._swap(pending, replace(pending, status=MessageStatus.CONFIRMED))
        reply = ChatMessage(
            role="assistant",
            content=response.message,
            attachment=response.attachment,
            tag=response.tag
        )
        self.messages.append(reply)
        if self.thread_id is None:
            self.thread_id = response.thread_id
        if response.warning:
            self.warnings.append(response.warning)
        self._settle_state()
        return reply

    def dismiss_warning(self, index: int = 0):
        if 0 <= index < len(self.warnings):
            del self.warnings[index]

    def confirmed_messages(self) -> List[ChatMessage]:
        """Messages the server has acknowledged, in order."""
        return [m for m in self.messages if m.status is MessageStatus.CONFIRMED]

    def close(self):
        """Discard the session; late replies are ignored from now on."""
        self._closed = True
        self._navigate()
