"""
HTTP client for the chat and history endpoints.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from ..exceptions import ApiError, AuthRequiredError, ExternalServiceError, InvalidPayloadError, NotFoundError
from ..schemas.conversation import (
    ConversationDetailResponse,
    ConversationListResponse,
    SaveConversationResponse,
)
from ..schemas.message import ChatResponse, MessageIn

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class ChatApiClient:
    """
    Thin async wrapper over the backend API.

    Network settings (base URL, bearer token, timeout) are passed in
    explicitly; the same object can serve several sessions.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(),
                timeout=self.timeout
            ) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = None

                if response.status < 400:
                    return data

                detail = _error_detail(data) or response.reason or f"HTTP {response.status}"
                if response.status == 401:
                    raise AuthRequiredError(detail)
                if response.status == 404:
                    raise NotFoundError("Conversation", path.rsplit("/", 1)[-1])
                if response.status in (502, 504):
                    raise ExternalServiceError(detail)
                raise ApiError(response.status, detail)
        except aiohttp.ClientError as e:
            raise ApiError(0, f"Network error: {e}") from e
        except asyncio.TimeoutError:
            raise ApiError(0, "Request timed out")

    @staticmethod
    def _parse(model: Type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise InvalidPayloadError(
                f"Unexpected response shape for {model.__name__}",
                {"errors": e.errors(include_url=False)}
            ) from e

    async def send_message(self, text: str, thread_id: Optional[str] = None) -> ChatResponse:
        body: Dict[str, Any] = {"message": text}
        if thread_id:
            body["threadId"] = thread_id
        return self._parse(ChatResponse, await self._request("POST", "/api/chat", json=body))

    async def list_history(self, limit: int = 20, offset: int = 0) -> ConversationListResponse:
        data = await self._request("GET", "/api/chat/history", params={"limit": limit, "offset": offset})
        return self._parse(ConversationListResponse, data)

    async def get_history(self, thread_id: str) -> ConversationDetailResponse:
        data = await self._request("GET", f"/api/chat/history/{thread_id}")
        return self._parse(ConversationDetailResponse, data)

    async def save_history(
        self,
        thread_id: str,
        messages: List[MessageIn],
        title: Optional[str] = None
    ) -> SaveConversationResponse:
        body: Dict[str, Any] = {
            "threadId": thread_id,
            "messages": [m.model_dump(mode="json", by_alias=True, exclude_none=True) for m in messages]
        }
        if title:
            body["title"] = title
        data = await self._request("POST", "/api/chat/history", json=body)
        return self._parse(SaveConversationResponse, data)

    async def delete_history(self, thread_id: str):
        await self._request("DELETE", f"/api/chat/history/{thread_id}")


def _error_detail(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    detail = data.get("detail") or data.get("error")
    if isinstance(detail, str):
        return detail
    if detail is not None:
        return str(detail)
    return None
