"""
Conversation gateway: forwards a user message to the assistant and
persists the exchange for authenticated callers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Hashable, Optional, Set

from ..exceptions import ChatValidationError, PersistenceError
from ..schemas.message import Attachment, MessageIn
from ..schemas.user import Identity
from .assistant_service import AssistantService
from .history_service import HistoryService, SaveResult
from .illustration_service import IllustrationCatalog

logger = logging.getLogger(__name__)

SAVE_FAILED_WARNING = "Your message was answered but could not be saved to your history. We will keep trying."


@dataclass
class ExchangeResult:
    message: str
    thread_id: str
    attachment: Optional[Attachment] = None
    tag: Optional[str] = None
    warning: Optional[str] = None
    # True saved, False failed, None ephemeral or still in progress
    persisted: Optional[bool] = None


class ThreadSequencer:
    """
    Per-key ordering for exchanges and saves.

    ``hold`` is a FIFO lock per key. ``schedule`` chains jobs so that a job
    for a key starts only after the previous job for that key has finished,
    whatever its outcome. Keys that go idle are forgotten.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._holders: Dict[Hashable, int] = {}
        self._tails: Dict[Hashable, asyncio.Task] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                self._locks.pop(key, None)

    def schedule(self, key: Hashable, job: Callable[[], Awaitable]) -> asyncio.Task:
        previous = self._tails.get(key)

        async def run():
            if previous is not None:
                await asyncio.wait([previous])
            return await job()

        task = asyncio.create_task(run(), name=f"persist-{key}")
        self._tails[key] = task

        def forget(done: asyncio.Task):
            if self._tails.get(key) is done:
                del self._tails[key]

        task.add_done_callback(forget)
        return task

    def is_idle(self) -> bool:
        return not self._locks and not self._tails


class ConversationGateway:
    """
    Mediates between the client, the assistant and the history store.

    The assistant call never happens while a database session is open, and
    the save runs as a tracked task so a client that goes away mid-request
    cannot abort it.
    """

    def __init__(
        self,
        assistant: AssistantService,
        history: HistoryService,
        catalog: Optional[IllustrationCatalog] = None,
        persist_wait: float = 2.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.5
    ):
        self.assistant = assistant
        self.history = history
        self.catalog = catalog
        self.persist_wait = persist_wait
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.sequencer = ThreadSequencer()
        self._pending: Set[asyncio.Task] = set()

    async def exchange(
        self,
        identity: Optional[Identity],
        thread_id: Optional[str],
        text: str
    ) -> ExchangeResult:
        """
        Send ``text`` to the assistant, on a new thread when ``thread_id`` is
        None, and persist the pair when ``identity`` is given.

        Raises ChatValidationError for blank text and ExternalServiceError when
        the assistant fails; a failed save only produces a warning.
        """
        if not text or not text.strip():
            raise ChatValidationError("Message cannot be empty")

        assistant_id = identity.assistant_id if identity else None
        tag = "personal" if assistant_id else "default"
        owner = identity.user_id if identity else None
        attachment = self.catalog.resolve(text) if self.catalog else None

        outcome: Optional[asyncio.Future] = None
        if thread_id:
            async with self.sequencer.hold((owner, thread_id)):
                reply = await self.assistant.continue_thread(thread_id, text, assistant_id)
                if identity is not None:
                    outcome = self._schedule_save(identity, reply.thread_id, text, reply.text, attachment, tag)
        else:
            reply = await self.assistant.create_thread(text, assistant_id)
            if identity is not None:
                outcome = self._schedule_save(identity, reply.thread_id, text, reply.text, attachment, tag)

        logger.info("Assistant replied on thread %s in %dms", reply.thread_id, reply.generation_time)

        result = ExchangeResult(
            message=reply.text,
            thread_id=reply.thread_id,
            attachment=attachment,
            tag=tag
        )

        if outcome is None:
            logger.debug("Ephemeral exchange on thread %s, not persisted", reply.thread_id)
            return result

        try:
            await asyncio.wait_for(asyncio.shield(outcome), timeout=self.persist_wait)
            result.persisted = True
        except asyncio.TimeoutError:
            logger.info("Save of thread %s still running after %.1fs", reply.thread_id, self.persist_wait)
        except PersistenceError as e:
            logger.warning("Save of thread %s failed, retrying in background: %s", reply.thread_id, e)
            result.warning = SAVE_FAILED_WARNING
            result.persisted = False
        except Exception:
            logger.exception("Unexpected error saving thread %s", reply.thread_id)
            result.warning = SAVE_FAILED_WARNING
            result.persisted = False

        return result

    def _schedule_save(
        self,
        identity: Identity,
        thread_id: str,
        text: str,
        reply: str,
        attachment: Optional[Attachment],
        tag: str
    ) -> asyncio.Future:
        """Queue the save behind earlier saves of the same thread."""
        messages = [
            MessageIn(role="user", content=text),
            MessageIn(role="assistant", content=reply, attachment=attachment, tag=tag)
        ]
        outcome = asyncio.get_running_loop().create_future()
        # a failure nobody waited for is still logged by _persist
        outcome.add_done_callback(lambda f: f.cancelled() or f.exception())

        task = self.sequencer.schedule(
            (identity.user_id, thread_id),
            lambda: self._persist(identity.user_id, thread_id, messages, outcome)
        )
        self._pending.add(task)
        task.add_done_callback(self._on_save_done)
        return outcome

    def _on_save_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Save task %s failed: %s", task.get_name(), task.exception())

    async def _persist(
        self,
        user_id: int,
        thread_id: str,
        messages,
        outcome: asyncio.Future
    ) -> Optional[SaveResult]:
        delay = self.retry_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                saved = await self.history.save_messages(user_id, thread_id, messages)
            except PersistenceError as e:
                if not outcome.done():
                    outcome.set_exception(e)
                if attempt > self.retry_attempts:
                    logger.error(
                        "Giving up saving thread %s for user %s after %d attempts: %s",
                        thread_id, user_id, attempt, e
                    )
                    return None
                logger.warning("Save attempt %d for thread %s failed: %s", attempt, thread_id, e)
                await asyncio.sleep(delay)
                delay *= 2
            except Exception as e:
                if not outcome.done():
                    outcome.set_exception(e)
                raise
            else:
                if not outcome.done():
                    outcome.set_result(saved)
                return saved

    @property
    def pending_saves(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None):
        """Wait for in-flight saves, e.g. on shutdown."""
        if not self._pending:
            return
        logger.info("Waiting for %d pending save(s)", len(self._pending))
        _, still_running = await asyncio.wait(set(self._pending), timeout=timeout)
        if still_running:
            logger.warning("%d save(s) still running at shutdown", len(still_running))
