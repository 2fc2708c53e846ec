"""
Chat route: one message in, one assistant reply out.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Request
from typing import Optional
import logging

from ..exceptions import ChatValidationError, ExternalServiceError
from ..schemas.message import ChatRequest, ChatResponse
from ..schemas.user import Identity
from ..services.chat_gateway import ConversationGateway
from ..utils.security import get_identity_optional

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])


def get_gateway(request: Request) -> ConversationGateway:
    """The gateway built at startup."""
    return request.app.state.gateway


@router.post("", response_model=ChatResponse, response_model_exclude_none=True)
async def send_message(
    chat_request: ChatRequest,
    identity: Optional[Identity] = Depends(get_identity_optional),
    gateway: ConversationGateway = Depends(get_gateway)
):
    """
    Send a message to the assistant.

    Without a thread id a new thread is started. Anonymous callers get a
    reply but nothing is saved.
    """
    try:
        result = await gateway.exchange(identity, chat_request.thread_id, chat_request.message)
    except ChatValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )
    except ExternalServiceError as e:
        logger.error("Assistant call failed for thread %s: %s", chat_request.thread_id, e.details or e.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.message
        )

    return ChatResponse(
        message=result.message,
        thread_id=result.thread_id,
        attachment=result.attachment,
        tag=result.tag,
        warning=result.warning
    )
