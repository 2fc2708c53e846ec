"""
Services package.
"""

from .assistant_service import AssistantService
from .chat_gateway import ConversationGateway
from .history_service import HistoryService
from .illustration_service import IllustrationCatalog

__all__ = ["AssistantService", "ConversationGateway", "HistoryService", "IllustrationCatalog"]
