"""
Assistant service for talking to an OpenAI Assistants thread.
"""

from openai import AsyncOpenAI, OpenAIError
from dataclasses import dataclass
from typing import Optional
import asyncio
import logging
import time

from ..config import settings
from ..exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

FAILED_RUN_STATES = ("failed", "cancelled", "expired", "incomplete", "requires_action")


@dataclass
class AssistantReply:
    """Reply text plus the thread it belongs to."""
    text: str
    thread_id: str
    generation_time: int = 0  # ms


class AssistantService:
    """
    Create-thread / continue-thread contract over the Assistants API.

    Every call is bounded by ``timeout`` seconds as a whole (thread creation,
    run and polling). Any failure is raised as ExternalServiceError and no
    thread id is handed out for a failed first exchange.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_assistant_id: Optional[str] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = base_url or settings.OPENAI_BASE_URL
        self.default_assistant_id = default_assistant_id or settings.ASSISTANT_ID
        self.timeout = timeout or settings.OPENAI_TIMEOUT
        self.poll_interval = poll_interval if poll_interval is not None else settings.RUN_POLL_INTERVAL
        self.max_attempts = max_attempts or settings.RUN_MAX_ATTEMPTS
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # created lazily so the app can start without credentials
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout
            )
        return self._client

    async def create_thread(self, text: str, assistant_id: Optional[str] = None) -> AssistantReply:
        """Start a new thread with ``text`` as its first message."""
        return await self._bounded(self._exchange(None, text, assistant_id))

    async def continue_thread(
        self,
        thread_id: str,
        text: str,
        assistant_id: Optional[str] = None
    ) -> AssistantReply:
        """Add ``text`` to an existing thread and wait for the reply."""
        return await self._bounded(self._exchange(thread_id, text, assistant_id))

    async def _bounded(self, coro) -> AssistantReply:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ExternalServiceError(f"Assistant did not answer within {self.timeout:g} seconds")
        except OpenAIError as e:
            logger.error("OpenAI Assistant error: %s", e)
            raise ExternalServiceError("Assistant request failed", {"reason": str(e)}) from e

    async def _exchange(
        self,
        thread_id: Optional[str],
        text: str,
        assistant_id: Optional[str]
    ) -> AssistantReply:
        assistant_id = assistant_id or self.default_assistant_id
        if not assistant_id:
            raise ExternalServiceError("No assistant is configured")

        start_time = time.time()

        if thread_id is None:
            thread = await self.client.beta.threads.create()
            thread_id = thread.id
            logger.info("Created thread %s", thread_id)

        await self.client.beta.threads.messages.create(
            thread_id=thread_id,
            role="user",
            content=text
        )

        run = await self.client.beta.threads.runs.create(
            thread_id=thread_id,
            assistant_id=assistant_id
        )
        await self._wait_for_run(thread_id, run.id)

        reply = await self._latest_reply(thread_id)
        return AssistantReply(
            text=reply,
            thread_id=thread_id,
            generation_time=int((time.time() - start_time) * 1000)
        )

    async def _wait_for_run(self, thread_id: str, run_id: str):
        for attempt in range(1, self.max_attempts + 1):
            run = await self.client.beta.threads.runs.retrieve(run_id=run_id, thread_id=thread_id)
            if run.status == "completed":
                return
            if run.status in FAILED_RUN_STATES:
                reason = getattr(run.last_error, "message", None) or run.status
                raise ExternalServiceError(f"Assistant run {run.status}", {"reason": reason})

            logger.debug("Run status: %s, attempt %d/%d", run.status, attempt, self.max_attempts)
            await asyncio.sleep(self.poll_interval)

        raise ExternalServiceError(f"Assistant run did not complete after {self.max_attempts} checks")

    async def _latest_reply(self, thread_id: str) -> str:
        messages = await self.client.beta.threads.messages.list(
            thread_id=thread_id,
            order="desc",
            limit=1
        )
        if not messages.data or messages.data[0].role != "assistant":
            raise ExternalServiceError("No response received from assistant")

        for block in messages.data[0].content:
            if block.type == "text":
                return block.text.value

        raise ExternalServiceError("Assistant reply had no text content")
