import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from backend.src.core.errors import NotFoundError
from backend.src.models.chatbot import Chatbot, DEFAULT_APPEARANCE, DEFAULT_SETTINGS
from backend.src.models.conversation import Conversation
from backend.src.schemas.chatbot import ChatbotCreate, ChatbotUpdate
from backend.src.services.conversation_store import ConversationStore
from backend.src.services.usage_service import UsageService

logger = logging.getLogger(__name__)


class ChatbotService:
    """Owner-scoped chatbot management. A chatbot that belongs to someone else is reported as missing."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_chatbot(self, user_id: str, data: ChatbotCreate) -> Chatbot:
        chatbot = Chatbot(
            user_id=user_id,
            name=data.name,
            description=data.description,
            personality=data.personality,
            knowledge_base=list(data.knowledge_base),
            appearance=data.appearance.model_dump(),
            settings=data.settings.model_dump(),
            is_active=True,
        )
        self.db.add(chatbot)
        await self.db.commit()
        await self.db.refresh(chatbot)

        await UsageService(self.db).record_chatbot_created(user_id)
        logger.info("User %s created chatbot %s", user_id, chatbot.id)
        return chatbot

    async def get_chatbot(self, chatbot_id: str, user_id: str) -> Chatbot:
        result = await self.db.execute(
            select(Chatbot).where(Chatbot.id == chatbot_id, Chatbot.user_id == user_id)
        )
        chatbot = result.scalars().first()
        if chatbot is None:
            raise NotFoundError("Chatbot not found", chatbot_id=chatbot_id)
        return chatbot

    async def list_chatbots(self, user_id: str) -> List[Chatbot]:
        result = await self.db.execute(
            select(Chatbot).where(Chatbot.user_id == user_id).order_by(Chatbot.created_at.desc(), Chatbot.name)
        )
        return list(result.scalars().all())

    async def update_chatbot(self, chatbot_id: str, user_id: str, data: ChatbotUpdate) -> Chatbot:
        chatbot = await self.get_chatbot(chatbot_id, user_id)

        changes = data.model_dump(exclude_unset=True)
        for field in ("name", "description", "personality", "is_active"):
            if field in changes and changes[field] is not None:
                setattr(chatbot, field, changes[field])
        if data.knowledge_base is not None:
            chatbot.knowledge_base = list(data.knowledge_base)
        # Nested objects are partial: only the keys the caller sent are replaced
        if data.appearance is not None:
            chatbot.appearance = {
                **DEFAULT_APPEARANCE,
                **(chatbot.appearance or {}),
                **data.appearance.model_dump(exclude_unset=True),
            }
        if data.settings is not None:
            chatbot.settings = {
                **DEFAULT_SETTINGS,
                **(chatbot.settings or {}),
                **data.settings.model_dump(exclude_unset=True),
            }

        await self.db.commit()
        await self.db.refresh(chatbot)
        return chatbot

    async def set_active(self, chatbot_id: str, user_id: str, is_active: bool) -> Chatbot:
        return await self.update_chatbot(chatbot_id, user_id, ChatbotUpdate(is_active=is_active))

    async def train_chatbot(self, chatbot_id: str, user_id: str, entries: List[str]) -> Chatbot:
        """Appends new entries to the end of the knowledge base."""
        chatbot = await self.get_chatbot(chatbot_id, user_id)
        chatbot.knowledge_base = [*(chatbot.knowledge_base or []), *entries]
        await self.db.commit()
        await self.db.refresh(chatbot)
        return chatbot

    async def delete_chatbot(self, chatbot_id: str, user_id: str):
        chatbot = await self.get_chatbot(chatbot_id, user_id)
        # Conversations and messages go with it through ON DELETE CASCADE
        await self.db.delete(chatbot)
        await self.db.commit()
        logger.info("User %s deleted chatbot %s", user_id, chatbot_id)

    async def list_conversations(self, chatbot_id: str, user_id: str, limit: int = 50, offset: int = 0) -> List[Conversation]:
        await self.get_chatbot(chatbot_id, user_id)
        return await ConversationStore(self.db).list_conversations(chatbot_id, limit=limit, offset=offset)

    async def get_owned_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        result = await self.db.execute(
            select(Conversation)
            .join(Chatbot, Chatbot.id == Conversation.chatbot_id)
            .where(Conversation.id == conversation_id, Chatbot.user_id == user_id)
        )
        conversation = result.scalars().first()
        if conversation is None:
            raise NotFoundError("Conversation not found", conversation_id=conversation_id)
        return conversation
