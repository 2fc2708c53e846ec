"""
Lisa Chat - Main FastAPI Application
Chat with the Lisa train-maintenance assistant and keep the history.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import logging

from .config import settings
from .database import engine as default_engine, create_session_factory, init_db, close_db
from .routers import chat_router, conversations_router
from .services.assistant_service import AssistantService
from .services.chat_gateway import ConversationGateway
from .services.history_service import HistoryService
from .services.illustration_service import IllustrationCatalog, load_metadata

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Disable verbose SQLAlchemy logging
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


def create_app(engine=None, assistant: Optional[AssistantService] = None) -> FastAPI:
    """Build the application around an engine and an assistant client."""
    engine = engine or default_engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        await init_db(engine)

        session_factory = create_session_factory(engine)
        history = HistoryService(session_factory)
        app.state.session_factory = session_factory
        app.state.history = history
        app.state.gateway = ConversationGateway(
            assistant=assistant or AssistantService(),
            history=history,
            catalog=IllustrationCatalog(
                settings.BACKEND_URL,
                load_metadata(settings.ILLUSTRATION_METADATA_PATH)
            ),
            persist_wait=settings.PERSIST_WAIT_SECONDS,
            retry_attempts=settings.PERSIST_RETRY_ATTEMPTS,
            retry_delay=settings.PERSIST_RETRY_DELAY
        )
        logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)

        yield

        # Shutdown: saves already triggered run to completion
        await app.state.gateway.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        await close_db(engine)
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Chat with the Lisa assistant and keep your conversation history",
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(chat_router)
    app.include_router(conversations_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION
        }

    @app.get("/api")
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "endpoints": {
                "chat": "/api/chat",
                "history": "/api/chat/history",
                "stats": "/api/chat/stats",
                "search": "/api/chat/search",
                "export": "/api/chat/export/{threadId}"
            }
        }

    return app


app = create_app()
