"""
Browsing saved conversations from the client.
"""

from typing import List, Optional

from ..schemas.conversation import ConversationSummary
from ..services.transform import filter_conversations
from .api import ChatApiClient
from .session import ChatSession


class HistoryBrowser:
    """Fetched conversation summaries plus a local title filter."""

    def __init__(self, api: ChatApiClient):
        self.api = api
        self.conversations: List[ConversationSummary] = []
        self.total = 0
        self.query = ""

    @property
    def visible(self) -> List[ConversationSummary]:
        return filter_conversations(self.conversations, self.query)

    async def refresh(self, limit: int = 20, offset: int = 0) -> List[ConversationSummary]:
        response = await self.api.list_history(limit, offset)
        self.conversations = response.conversations
        self.total = response.total
        return self.visible

    def search(self, query: Optional[str]) -> List[ConversationSummary]:
        self.query = query or ""
        return self.visible

    async def delete(self, thread_id: str, session: Optional[ChatSession] = None):
        """Delete on the server, then drop it locally and from the open view."""
        await self.api.delete_history(thread_id)
        self.conversations = [c for c in self.conversations if c.thread_id != thread_id]
        if session is not None and session.thread_id == thread_id:
            session.start_new_conversation()

    async def open(self, session: ChatSession, thread_id: str) -> bool:
        return await session.load_conversation(thread_id)
