"""
FastAPI application entry point for the stock advisor service.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .agent.chat_orchestrator import ChatOrchestrator
from .agent.llm_client import DashScopeClient
from .agent.response_assembler import StreamingResponseAssembler
from .agent.session_manager import AdvisorSessionManager, OrchestratorFactory
from .api.advisor import router as advisor_router
from .api.health import router as health_router
from .core.config import Settings, get_settings
from .core.exceptions import AppError, ConfigurationError
from .database.kv_store import InMemoryKeyValueStore, KeyValueStore
from .database.redis import RedisStore
from .services.conversation_store import (
    HttpConversationStore,
    InMemoryConversationStore,
    PersistenceGateway,
)
from .services.identity_resolver import SessionIdentityResolver
from .services.profile_extractor import ToolCallProfileExtractor
from .services.summary_generator import SummaryGenerator

# Set the root logger level to INFO so we can see detailed logs
logging.basicConfig(level=logging.INFO)

logger = structlog.get_logger()


def create_orchestrator_factory(
    settings: Settings,
    chat_llm: DashScopeClient,
    summary_llm: DashScopeClient,
    gateway: PersistenceGateway,
    identity_store: KeyValueStore,
) -> OrchestratorFactory:
    """Build orchestrators that share clients and stores but own their state."""
    assembler = StreamingResponseAssembler(
        chat_llm, channel_size=settings.stream_channel_size
    )
    summary_generator = SummaryGenerator(summary_llm, gateway)
    profile_extractor = ToolCallProfileExtractor()
    freshness_window = timedelta(hours=settings.identity_freshness_hours)

    def factory(session_id: str) -> ChatOrchestrator:
        return ChatOrchestrator(
            settings=settings,
            assembler=assembler,
            summary_generator=summary_generator,
            gateway=gateway,
            identity_resolver=SessionIdentityResolver(
                identity_store, session_id, freshness_window=freshness_window
            ),
            profile_extractor=profile_extractor,
        )

    return factory


def create_conversation_store(settings: Settings) -> PersistenceGateway:
    if not settings.conversation_store_url:
        logger.warning("No conversation store configured, keeping turns in memory")
        return InMemoryConversationStore()
    return HttpConversationStore(
        settings.conversation_store_url, timeout=settings.conversation_store_timeout
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan management for stores and the session registry."""
    settings = get_settings()

    logger.info("Starting stock advisor", environment=settings.environment)

    if settings.is_production and not settings.dashscope_api_key:
        raise ConfigurationError("DASHSCOPE_API_KEY is required in production")

    redis_store: RedisStore | None = None
    identity_store: KeyValueStore
    if settings.redis_url:
        redis_store = RedisStore()
        await redis_store.connect(settings.redis_url)
        identity_store = redis_store
    else:
        logger.warning("No Redis configured, identities are kept in memory")
        identity_store = InMemoryKeyValueStore()

    gateway = create_conversation_store(settings)

    chat_llm = DashScopeClient(settings)
    summary_llm = DashScopeClient(settings, model=settings.summarization_model)

    session_manager = AdvisorSessionManager(
        create_orchestrator_factory(
            settings, chat_llm, summary_llm, gateway, identity_store
        ),
        ttl_minutes=settings.session_ttl_minutes,
        cleanup_interval_seconds=settings.session_cleanup_interval_seconds,
    )

    try:
        await session_manager.start()

        # Store in app state for dependency injection
        app.state.redis = redis_store
        app.state.identity_store = identity_store
        app.state.conversation_store = gateway
        app.state.session_manager = session_manager

        logger.info("Advisor services started")

        yield

    finally:
        await session_manager.stop()
        await gateway.close()
        if redis_store is not None:
            await redis_store.disconnect()
        logger.info("Advisor services stopped")


def register_exception_handlers(app: FastAPI) -> None:
    """Map custom AppError exceptions to their HTTP status codes."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        error_dict = exc.to_dict()

        logger.error(
            "Application error occurred",
            path=request.url.path,
            method=request.method,
            **error_dict,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error_type": exc.error_type},
        )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Stock Advisor API",
        description="Conversational stock advisor with persistent memory",
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # CORS middleware for frontend communication
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health_router, prefix="/api", tags=["health"])
    app.include_router(advisor_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint for basic connectivity check."""
        return {
            "message": "Stock Advisor API",
            "version": __version__,
            "environment": settings.environment,
        }

    return app


# Create app instance
app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "stock_advisor.main:app",
        host="0.0.0.0",  # nosec B104 - Required for Docker container
        port=8000,
        reload=settings.is_development,
        log_config=None,
    )
