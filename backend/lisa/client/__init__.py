"""
Client-side session cache and API wrapper.
"""

from .api import ChatApiClient
from .history import HistoryBrowser
from .session import ChatMessage, ChatSession, MessageStatus, SessionState

__all__ = ["ChatApiClient", "ChatMessage", "ChatSession", "HistoryBrowser", "MessageStatus", "SessionState"]
