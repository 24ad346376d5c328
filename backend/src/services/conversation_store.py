import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from backend.src.core.errors import ConflictError, NotFoundError
from backend.src.models.chatbot import Chatbot
from backend.src.models.conversation import Conversation, Message, MessageRole, utcnow

logger = logging.getLogger(__name__)

OPEN_CONVERSATION_ATTEMPTS = 3


class ConversationStore:
    """Conversation and message persistence for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        dialect = self.db.bind.dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise RuntimeError(f"Unsupported database dialect for conversation upsert: {dialect}")

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found", conversation_id=conversation_id)
        return conversation

    async def get_or_create_conversation(
        self,
        chatbot_id: str,
        session_id: str,
        user_info: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        """
        Returns the session's open conversation, starting one if there is none.
        A session whose last conversation was ended gets a fresh conversation.
        """
        result = await self.db.execute(select(Chatbot.is_active).where(Chatbot.id == chatbot_id))
        is_active = result.scalar_one_or_none()
        if not is_active:
            raise NotFoundError("Chatbot not found or inactive", chatbot_id=chatbot_id)

        insert = self._insert()
        for _ in range(OPEN_CONVERSATION_ATTEMPTS):
            # Single-statement upsert: concurrent first messages for one session
            # collapse onto the same row via the partial (chatbot_id, session_id) index
            stmt = (
                insert(Conversation)
                .values(
                    id=str(uuid.uuid4()),
                    chatbot_id=chatbot_id,
                    session_id=session_id,
                    user_info=user_info,
                    started_at=utcnow(),
                )
                .on_conflict_do_nothing(
                    index_elements=["chatbot_id", "session_id"],
                    index_where=Conversation.ended_at.is_(None),
                )
            )
            created = await self.db.execute(stmt)
            await self.db.commit()

            result = await self.db.execute(
                select(Conversation)
                .where(
                    Conversation.chatbot_id == chatbot_id,
                    Conversation.session_id == session_id,
                    Conversation.ended_at.is_(None),
                )
                .execution_options(populate_existing=True)
            )
            conversation = result.scalars().first()
            # None only if the open row was ended between the two statements
            if conversation is not None:
                if created.rowcount:
                    logger.info("Started conversation %s for chatbot %s", conversation.id, chatbot_id)
                return conversation

        raise ConflictError("Could not open a conversation for this session", chatbot_id=chatbot_id, session_id=session_id)

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        conversation = await self.get_conversation(conversation_id)
        if not conversation.is_open:
            raise ConflictError("Conversation has ended", conversation_id=conversation_id)

        message = Message(
            conversation_id=conversation_id,
            role=MessageRole(role).value,
            content=content,
            metadata_=metadata,
            timestamp=utcnow(),
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)
        return message

    async def recent_messages(self, conversation_id: str, limit: int) -> List[Message]:
        """The newest `limit` messages, returned oldest first."""
        if limit <= 0:
            return []
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def list_messages(self, conversation_id: str) -> List[Message]:
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.timestamp.asc(), Message.id.asc())
        )
        return list(result.scalars().all())

    async def end_conversation(self, conversation_id: str) -> Conversation:
        """OPEN -> CLOSED. Ending an already closed conversation changes nothing."""
        conversation = await self.get_conversation(conversation_id)
        if conversation.is_open:
            await self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id, Conversation.ended_at.is_(None))
                .values(ended_at=utcnow())
            )
            await self.db.commit()
            await self.db.refresh(conversation)
            logger.info("Closed conversation %s", conversation_id)
        return conversation

    async def list_conversations(self, chatbot_id: str, limit: int = 50, offset: int = 0) -> List[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.chatbot_id == chatbot_id)
            .order_by(Conversation.started_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())
