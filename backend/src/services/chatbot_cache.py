import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from backend.src.core.errors import NotFoundError
from backend.src.models.chatbot import Chatbot, DEFAULT_SETTINGS

logger = logging.getLogger(__name__)

CACHE_PREFIX = "chatbot:config:"


@dataclass(frozen=True)
class ChatbotSnapshot:
    """Read-only copy of the chatbot fields the conversation pipeline needs."""

    id: str
    user_id: str
    name: str
    description: Optional[str]
    personality: str
    knowledge_base: List[str] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True

    @classmethod
    def from_model(cls, chatbot: Chatbot) -> "ChatbotSnapshot":
        return cls(
            id=chatbot.id,
            user_id=chatbot.user_id,
            name=chatbot.name,
            description=chatbot.description,
            personality=chatbot.personality,
            knowledge_base=list(chatbot.knowledge_base or []),
            settings={**DEFAULT_SETTINGS, **(chatbot.settings or {})},
            is_active=bool(chatbot.is_active),
        )

    def setting(self, key: str):
        return self.settings.get(key, DEFAULT_SETTINGS.get(key))


class ChatbotConfigCache:
    """
    Read-through cache for chatbot configuration.
    Entries expire after `ttl` seconds and are not invalidated on write, so an
    edit can take up to one TTL to reach visitors. A cache outage falls back to
    the database.
    """

    def __init__(self, redis: Optional[Redis], ttl: int = 60):
        self.redis = redis
        self.ttl = ttl

    async def _read(self, chatbot_id: str) -> Optional[ChatbotSnapshot]:
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(CACHE_PREFIX + chatbot_id)
        except RedisError as e:
            logger.warning("Chatbot cache read failed for %s: %s", chatbot_id, e)
            return None
        if not raw:
            return None
        return ChatbotSnapshot(**json.loads(raw))

    async def _write(self, snapshot: ChatbotSnapshot):
        if self.redis is None:
            return
        try:
            await self.redis.set(CACHE_PREFIX + snapshot.id, json.dumps(asdict(snapshot)), ex=self.ttl)
        except RedisError as e:
            logger.warning("Chatbot cache write failed for %s: %s", snapshot.id, e)

    async def get_active(self, db: AsyncSession, chatbot_id: str) -> ChatbotSnapshot:
        """Returns the chatbot if it exists and is active, else raises NotFoundError."""
        snapshot = await self._read(chatbot_id)
        if snapshot is None:
            result = await db.execute(select(Chatbot).where(Chatbot.id == chatbot_id))
            chatbot = result.scalars().first()
            if chatbot is None:
                raise NotFoundError("Chatbot not found or inactive", chatbot_id=chatbot_id)
            snapshot = ChatbotSnapshot.from_model(chatbot)
            await self._write(snapshot)

        if not snapshot.is_active:
            raise NotFoundError("Chatbot not found or inactive", chatbot_id=chatbot_id)
        return snapshot
