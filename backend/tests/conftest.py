"""
Shared fixtures: a throwaway SQLite database, a scripted assistant and a
few users with tokens.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from jose import jwt

from lisa.config import settings
from lisa.database import create_engine, create_session_factory, init_db
from lisa.exceptions import ExternalServiceError
from lisa.main import create_app
from lisa.models import User
from lisa.schemas.user import Identity
from lisa.services.assistant_service import AssistantReply
from lisa.services.history_service import HistoryService
from lisa.services.illustration_service import IllustrationCatalog


class FakeAssistant:
    """Answers every message with an echo, on numbered thread ids."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.calls: List[Tuple[Optional[str], str, Optional[str]]] = []
        self.threads = 0
        self.active = 0
        self.max_active = 0

    async def _answer(self, thread_id: Optional[str], text: str, assistant_id: Optional[str]) -> AssistantReply:
        self.calls.append((thread_id, text, assistant_id))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise ExternalServiceError("Assistant request failed")
            if thread_id is None:
                self.threads += 1
                thread_id = f"thread_{self.threads}"
            return AssistantReply(text=f"Echo: {text}", thread_id=thread_id, generation_time=12)
        finally:
            self.active -= 1

    async def create_thread(self, text: str, assistant_id: Optional[str] = None) -> AssistantReply:
        return await self._answer(None, text, assistant_id)

    async def continue_thread(self, thread_id: str, text: str, assistant_id: Optional[str] = None) -> AssistantReply:
        return await self._answer(thread_id, text, assistant_id)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def history(session_factory):
    return HistoryService(session_factory)


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
def catalog():
    return IllustrationCatalog("http://testserver")


@pytest_asyncio.fixture
async def users(session_factory):
    """alice uses the shared assistant, bob has his own, carol is disabled."""
    async with session_factory() as db:
        alice = User(username="alice", email="alice@example.com")
        bob = User(username="bob", assistant_id="asst_personal")
        carol = User(username="carol", is_active=False)
        db.add_all([alice, bob, carol])
        await db.commit()
        return {
            user.username: Identity(user_id=user.id, username=user.username, assistant_id=user.assistant_id)
            for user in (alice, bob, carol)
        }


@pytest.fixture
def alice(users):
    return users["alice"]


@pytest.fixture
def bob(users):
    return users["bob"]


def create_access_token(data: dict, expires_delta: timedelta = timedelta(minutes=15)) -> str:
    """Sign a token the way the auth service does."""
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def token_for(identity: Identity, expires_delta: timedelta = timedelta(minutes=15)) -> str:
    return create_access_token({"sub": str(identity.user_id), "username": identity.username}, expires_delta)


def auth_headers(identity: Identity) -> dict:
    return {"Authorization": f"Bearer {token_for(identity)}"}


@pytest_asyncio.fixture
async def app(engine, assistant, users):
    app = create_app(engine=engine, assistant=assistant)
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def headers(users):
    """Bearer headers keyed by username."""
    return {name: auth_headers(identity) for name, identity in users.items()}
