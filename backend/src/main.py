import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from backend.src.api.error_handlers import register_exception_handlers
from backend.src.core.config import Settings, get_settings
from backend.src.core.logging import RequestContextMiddleware, setup_logging
from backend.src.db.session import build_engine, build_sessionmaker
from backend.src.init_db import create_tables
from backend.src.services.ai_gateway import AIGateway, LangChainGateway
from backend.src.services.chatbot_cache import ChatbotConfigCache
from backend.src.services.rate_limiter import RateLimiter
from backend.src.services.realtime import ConnectionManager

# --- API Route Imports ---
from backend.src.api.routes import admin, analytics, auth, chat, chatbots, realtime, widget

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    if settings.DB_CREATE_TABLES:
        await create_tables(app.state.engine)
    logger.info("%s %s ready", settings.PROJECT_NAME, settings.VERSION)
    yield
    await app.state.engine.dispose()
    if app.state.redis is not None:
        await app.state.redis.aclose()


def create_app(
    settings: Optional[Settings] = None,
    ai_gateway: Optional[AIGateway] = None,
    redis: Optional[Redis] = None,
) -> FastAPI:
    """
    Builds the application and its process-wide resources.
    Engine, Redis client, AI gateway and socket registry are created once here
    and reached by request handlers through `app.state` dependencies.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    # 1. App Initialize
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Chatbot SaaS API - chatbots, visitor conversations and analytics",
        lifespan=lifespan,
    )

    # 2. Shared resources (connections are opened lazily on first use)
    engine = build_engine(settings)
    if redis is None and settings.REDIS_URL:
        redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)

    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = build_sessionmaker(engine)
    app.state.redis = redis
    app.state.chatbot_cache = ChatbotConfigCache(redis, ttl=settings.CHATBOT_CACHE_TTL_SECONDS)
    app.state.rate_limiter = RateLimiter(redis, settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)
    app.state.ai_gateway = ai_gateway or LangChainGateway(settings)
    app.state.connection_manager = ConnectionManager()

    # 3. Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app)

    # 4. Health Check Route
    @app.get("/")
    async def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME}", "status": "active"}

    # 5. API Router Includes
    app.include_router(auth.router, prefix=settings.API_V1_STR, tags=["Authentication"])
    app.include_router(chatbots.router, prefix=settings.API_V1_STR, tags=["Chatbots"])
    app.include_router(chat.router, prefix=settings.API_V1_STR, tags=["Chat"])
    app.include_router(widget.router, prefix=settings.API_V1_STR, tags=["Widget"])
    app.include_router(analytics.router, prefix=settings.API_V1_STR, tags=["Analytics"])
    app.include_router(admin.router, prefix=settings.API_V1_STR, tags=["Admin"])
    app.include_router(realtime.router, tags=["Realtime"])

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.src.main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
