import logging
import uuid
from typing import List

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from backend.src.models.conversation import utcnow
from backend.src.models.usage import UsageStats

logger = logging.getLogger(__name__)


class UsageService:
    """Per-user consumption counters. Increments are single UPDATE statements."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _ensure_row(self, user_id: str):
        insert = pg_insert if self.db.bind.dialect.name == "postgresql" else sqlite_insert
        await self.db.execute(
            insert(UsageStats)
            .values(id=str(uuid.uuid4()), user_id=user_id)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )

    async def get_stats(self, user_id: str) -> UsageStats:
        await self._ensure_row(user_id)
        await self.db.commit()
        result = await self.db.execute(
            select(UsageStats).where(UsageStats.user_id == user_id).execution_options(populate_existing=True)
        )
        return result.scalars().one()

    async def record_message(self, user_id: str, content: str):
        await self._ensure_row(user_id)
        await self.db.execute(
            update(UsageStats)
            .where(UsageStats.user_id == user_id)
            .values(
                messages_this_month=UsageStats.messages_this_month + 1,
                total_messages=UsageStats.total_messages + 1,
                storage_used=UsageStats.storage_used + len(content.encode("utf-8")),
                last_active=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def record_chatbot_created(self, user_id: str):
        await self._ensure_row(user_id)
        await self.db.execute(
            update(UsageStats)
            .where(UsageStats.user_id == user_id)
            .values(chatbots_created=UsageStats.chatbots_created + 1, last_active=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def list_all(self, limit: int = 50, offset: int = 0) -> List[UsageStats]:
        """Every user's counters, busiest first."""
        result = await self.db.execute(
            select(UsageStats)
            .order_by(UsageStats.total_messages.desc(), UsageStats.user_id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def reset_monthly(self) -> int:
        """Starts a new billing period for everyone. Returns the number of rows reset."""
        result = await self.db.execute(
            update(UsageStats)
            .where(UsageStats.messages_this_month != 0)
            .values(messages_this_month=0)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Reset monthly message counts for %d users", result.rowcount)
        return result.rowcount
