from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from fastapi import Request

from backend.src.core.config import Settings


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(settings: Settings) -> AsyncEngine:
    url = settings.DATABASE_URL

    if "sqlite" in url:
        engine = create_async_engine(
            url,
            echo=settings.DB_ECHO,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    # --- Pooled engine for PostgreSQL ---
    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
        pool_pre_ping=True,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Dependency Injection
async def get_db(request: Request):
    session_factory = request.app.state.sessionmaker
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
