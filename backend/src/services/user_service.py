import logging
import math
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from backend.src.core.errors import NotFoundError
from backend.src.models.chatbot import Chatbot
from backend.src.models.conversation import Conversation
from backend.src.models.user import User
from backend.src.services.usage_service import UsageService

logger = logging.getLogger(__name__)


class UserService:
    """Account data for owners and user management for admins."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", user_id=user_id)
        return user

    async def list_users(self, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        total = await self.db.scalar(select(func.count(User.id)))
        result = await self.db.execute(
            select(User)
            .order_by(User.created_at.desc(), User.id)
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return {
            "users": list(result.scalars().all()),
            "total_count": total,
            "current_page": page,
            "total_pages": math.ceil(total / limit),
        }

    async def set_role(self, user_id: str, role: str) -> User:
        user = await self.get_user(user_id)
        user.role = role
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("Set role of user %s to %s", user_id, role)
        return user

    async def export_data(self, user: User) -> Dict[str, Any]:
        """Profile, usage counters and every chatbot with its full conversation history."""
        usage = await UsageService(self.db).get_stats(user.id)
        result = await self.db.execute(
            select(Chatbot)
            .where(Chatbot.user_id == user.id)
            .order_by(Chatbot.created_at, Chatbot.id)
            .options(selectinload(Chatbot.conversations).selectinload(Conversation.messages))
        )
        return {"user": user, "usage": usage, "chatbots": list(result.scalars().all())}
