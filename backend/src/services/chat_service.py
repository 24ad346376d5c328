import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.core.errors import AppError
from backend.src.models.conversation import Conversation, Message, MessageRole
from backend.src.schemas.chat import ChatRequest
from backend.src.services.ai_gateway import AIGateway, ReplyStream
from backend.src.services.chatbot_cache import ChatbotConfigCache, ChatbotSnapshot
from backend.src.services.context_builder import ContextAssembler
from backend.src.services.conversation_store import ConversationStore
from backend.src.services.realtime import RealtimeNotifier
from backend.src.services.usage_service import UsageService

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    conversation_id: str
    message_id: int
    reply: str
    fallback: bool = False


@dataclass
class StreamingTurn:
    """A visitor message that is stored and waiting for a streamed reply."""

    chatbot: ChatbotSnapshot
    conversation: Conversation
    visitor_message: Message
    stream: ReplyStream


class ChatService:
    """
    The conversation pipeline for one visitor message:
    chatbot lookup -> conversation get-or-create -> visitor message ->
    prompt -> AI reply -> stored reply + usage -> realtime events.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: ChatbotConfigCache,
        gateway: AIGateway,
        notifier: RealtimeNotifier,
        context_window: int = 10,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ):
        self.db = db
        self.cache = cache
        self.gateway = gateway
        self.notifier = notifier
        self.store = ConversationStore(db)
        self.usage = UsageService(db)
        self.assembler = ContextAssembler(self.store, window=context_window)
        self.session_factory = session_factory

    async def _accept_visitor_message(self, chatbot_id: str, request: ChatRequest):
        chatbot = await self.cache.get_active(self.db, chatbot_id)
        conversation = await self.store.get_or_create_conversation(chatbot_id, request.session_id, request.user_info)
        visitor_message = await self.store.append_message(conversation.id, MessageRole.VISITOR, request.content)
        await self.usage.record_message(chatbot.user_id, request.content)
        await self._notify(chatbot.id, visitor_message)
        return chatbot, conversation, visitor_message

    async def _notify(self, chatbot_id: str, message: Message):
        await self.notifier.publish_message(
            chatbot_id=chatbot_id,
            conversation_id=message.conversation_id,
            role=message.role,
            content=message.content,
            timestamp=message.timestamp,
        )

    async def persist_reply(
        self,
        conversation_id: str,
        text: str,
        owner_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        db: Optional[AsyncSession] = None,
    ) -> Message:
        """Stores the assistant reply and counts it against the owner's usage."""
        store, usage = (self.store, self.usage) if db is None else (ConversationStore(db), UsageService(db))
        message = await store.append_message(conversation_id, MessageRole.ASSISTANT, text, metadata)
        await usage.record_message(owner_id, text)
        return message

    async def process_message(self, chatbot_id: str, request: ChatRequest) -> ChatResult:
        chatbot, conversation, _ = await self._accept_visitor_message(chatbot_id, request)

        context = await self.assembler.build_prompt(chatbot, conversation.id)
        reply = await self.gateway.generate_reply(context, chatbot.settings)
        if reply.fallback:
            logger.info("Sent fallback reply (%s) in conversation %s", reply.reason, conversation.id)

        # Committed before any notification is attempted
        assistant_message = await self.persist_reply(conversation.id, reply.content, chatbot.user_id, reply.as_metadata())
        await self._notify(chatbot.id, assistant_message)

        return ChatResult(
            conversation_id=conversation.id,
            message_id=assistant_message.id,
            reply=reply.content,
            fallback=reply.fallback,
        )

    async def start_stream(self, chatbot_id: str, request: ChatRequest) -> StreamingTurn:
        """Runs every step up to generation so lookup errors surface before streaming starts."""
        chatbot, conversation, visitor_message = await self._accept_visitor_message(chatbot_id, request)
        context = await self.assembler.build_prompt(chatbot, conversation.id)
        stream = self.gateway.generate_stream(context, chatbot.settings)
        return StreamingTurn(chatbot=chatbot, conversation=conversation, visitor_message=visitor_message, stream=stream)

    async def finish_stream(self, turn: StreamingTurn) -> AsyncIterator[Dict[str, Any]]:
        """
        Yields reply fragments, then stores the full reply and yields a final summary event.
        If the consumer goes away mid-stream, the text received so far is still stored.
        """
        fragments: List[str] = []
        finished = False
        try:
            async for fragment in turn.stream:
                fragments.append(fragment)
                yield {"type": "chunk", "content": fragment}
            finished = True
        finally:
            if not finished:
                # Shielded so a cancelled response task cannot drop the reply
                await asyncio.shield(self._abandon_stream(turn, fragments))

        message = await self._store_streamed_reply(turn, "".join(fragments), self._stream_metadata(turn.stream))
        yield {
            "type": "done",
            "conversationId": turn.conversation.id,
            "messageId": message.id,
            "fallback": turn.stream.fallback,
        }

    def _stream_metadata(self, stream: ReplyStream) -> Dict[str, Any]:
        if stream.fallback:
            return {"fallback": True, "reason": stream.reason}
        metadata = {"model": self.gateway.model_name, "streamed": True}
        if stream.reason:
            metadata["truncated"] = stream.reason
        return metadata

    async def _store_streamed_reply(self, turn: StreamingTurn, text: str, metadata: Dict[str, Any]) -> Message:
        # The request-scoped session may already be released once the response body starts
        if self.session_factory is not None:
            async with self.session_factory() as db:
                message = await self.persist_reply(turn.conversation.id, text, turn.chatbot.user_id, metadata, db=db)
        else:
            message = await self.persist_reply(turn.conversation.id, text, turn.chatbot.user_id, metadata)
        await self._notify(turn.chatbot.id, message)
        return message

    async def _abandon_stream(self, turn: StreamingTurn, fragments: List[str]):
        await turn.stream.aclose()
        logger.info(
            "Visitor left conversation %s mid-stream after %d fragments",
            turn.conversation.id,
            len(fragments),
        )
        if fragments:
            text = "".join(fragments)
            metadata = {**self._stream_metadata(turn.stream), "interrupted": True}
        else:
            text = turn.chatbot.setting("fallback_message")
            metadata = {"fallback": True, "reason": "interrupted"}
        try:
            await self._store_streamed_reply(turn, text, metadata)
        except AppError as e:
            logger.warning("Could not store interrupted reply in conversation %s: %s", turn.conversation.id, e.message)

    async def end_conversation(self, conversation_id: str) -> Conversation:
        return await self.store.end_conversation(conversation_id)
