import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from backend.src.core.config import get_settings
from backend.src.core.logging import setup_logging
from backend.src.db.base import Base
from backend.src.db.session import build_engine

# --- Import ALL Models here ---
# SQLAlchemy only creates tables for models registered on Base.metadata
from backend.src.models.user import User  # noqa: F401
from backend.src.models.chatbot import Chatbot  # noqa: F401
from backend.src.models.conversation import Conversation, Message  # noqa: F401
from backend.src.models.usage import UsageStats  # noqa: F401

logger = logging.getLogger(__name__)


async def create_tables(engine: AsyncEngine, drop: bool = False):
    async with engine.begin() as conn:
        if drop:
            logger.warning("Dropping existing tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def init_database(drop: bool = False):
    settings = get_settings()
    engine = build_engine(settings)
    logger.info("Creating tables (users, chatbots, conversations, messages, usage_stats)...")
    try:
        await create_tables(engine, drop=drop)
    finally:
        await engine.dispose()
    logger.info("Database tables created successfully")


if __name__ == "__main__":
    import sys

    setup_logging(get_settings().LOG_LEVEL)
    asyncio.run(init_database(drop="--drop" in sys.argv))
