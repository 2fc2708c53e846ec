"""
Conversation history routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.encoders import jsonable_encoder

from ..exceptions import ChatValidationError, NotFoundError, PersistenceError
from ..schemas.conversation import (
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationStats,
    SaveConversationRequest,
    SaveConversationResponse,
    SearchResponse,
)
from ..schemas.user import Identity
from ..services.history_service import HistoryService
from ..utils.security import get_identity


router = APIRouter(prefix="/api/chat", tags=["History"])


def get_history_service(request: Request) -> HistoryService:
    """The history store built at startup."""
    return request.app.state.history


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Conversation not found"
    )


@router.get("/history", response_model=ConversationListResponse)
async def list_conversations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_identity),
    history: HistoryService = Depends(get_history_service)
):
    """List the caller's conversations, most recent first."""
    conversations, total = await history.list_conversations(identity.user_id, limit, offset)
    return ConversationListResponse(conversations=conversations, total=total)


@router.get("/history/{thread_id}", response_model=ConversationDetailResponse)
async def get_conversation(
    thread_id: str,
    identity: Identity = Depends(get_identity),
    history: HistoryService = Depends(get_history_service)
):
    """Get a conversation with all messages."""
    try:
        conversation = await history.get_conversation(identity.user_id, thread_id)
    except NotFoundError:
        raise _not_found()

    return ConversationDetailResponse(conversation=conversation)


@router.post("/history", response_model=SaveConversationResponse)
async def save_conversation(
    save_request: SaveConversationRequest,
    identity: Identity = Depends(get_identity),
    history: HistoryService = Depends(get_history_service)
):
    """
    Save a conversation.

    The body carries the client's full message list; messages already
    stored at the same positions are skipped.
    """
    try:
        saved = await history.save_messages(
            identity.user_id,
            save_request.thread_id,
            save_request.messages,
            offset=0,
            title=save_request.title
        )
    except ChatValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )
    except PersistenceError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.message
        )

    return SaveConversationResponse(
        message="Conversation saved successfully",
        thread_id=saved.thread_id,
        message_count=saved.message_count,
        created=saved.created
    )


@router.delete("/history/{thread_id}")
async def delete_conversation(
    thread_id: str,
    identity: Identity = Depends(get_identity),
    history: HistoryService = Depends(get_history_service)
):
    """Delete a conversation. Deleting one that does not exist is not an error."""
    try:
        deleted = await history.delete_conversation(identity.user_id, thread_id)
    except PersistenceError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.message
        )

    return {"message": "Conversation deleted successfully", "deleted": deleted}


@router.get("/stats", response_model=ConversationStats)
async def conversation_stats(
    identity: Identity = Depends(get_identity),
    history: HistoryService = Depends(get_history_service)
):
    """Totals and averages over the caller's conversations."""
    return await history.stats(identity.user_id)


@router.get("/search", response_model=SearchResponse)
async def search_conversations(
    q: str = Query(""),
    message_type: str = Query("all", alias="messageType"),
    sort_by: str = Query("newest", alias="sortBy"),
    date_range: str = Query("all", alias="dateRange"),
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(get_identity),
    history: HistoryService = Depends(get_history_service)
):
    """Substring search over titles and message text, with type, date and sort filters."""
    try:
        results = await history.search(identity.user_id, q, message_type, sort_by, limit, date_range)
    except ChatValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    return SearchResponse(results=results, total=len(results), query=q)


@router.get("/export/{thread_id}")
async def export_conversation(
    thread_id: str,
    format: str = "json",
    identity: Identity = Depends(get_identity),
    history: HistoryService = Depends(get_history_service)
):
    """Export a conversation as JSON or plain text."""
    try:
        exported = await history.export_conversation(identity.user_id, thread_id, format)
    except NotFoundError:
        raise _not_found()
    except ChatValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    headers = {"Content-Disposition": f'attachment; filename="conversation-{thread_id}.{format}"'}
    if format == "txt":
        return PlainTextResponse(exported, headers=headers)
    return JSONResponse(jsonable_encoder(exported), headers=headers)
