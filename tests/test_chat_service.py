import asyncio

import pytest
from sqlalchemy import select

from backend.src.models.conversation import Message
from backend.src.models.usage import UsageStats
from backend.src.schemas.chat import ChatRequest
from backend.src.services.chat_service import ChatService
from backend.src.services.realtime import RealtimeNotifier

from conftest import FALLBACK, StubGateway


def make_service(app, db, gateway):
    return ChatService(
        db,
        cache=app.state.chatbot_cache,
        gateway=gateway,
        notifier=RealtimeNotifier(app.state.connection_manager),
        session_factory=app.state.sessionmaker,
    )


async def stored_reply(app, conversation_id):
    async with app.state.sessionmaker() as session:
        result = await session.execute(
            select(Message).where(Message.conversation_id == conversation_id, Message.role == "assistant")
        )
        return result.scalars().one()


async def usage_of(app, user_id):
    async with app.state.sessionmaker() as session:
        result = await session.execute(select(UsageStats).where(UsageStats.user_id == user_id))
        return result.scalars().one()


async def test_partial_reply_is_stored_when_visitor_leaves(app, db, seeded_chatbot):
    gateway = StubGateway(chunks=["We open ", "at nine."])
    service = make_service(app, db, gateway)
    turn = await service.start_stream(seeded_chatbot.id, ChatRequest(session_id="s", content="Hours?"))
    events = service.finish_stream(turn)

    first = await events.__anext__()
    await events.aclose()

    assert first == {"type": "chunk", "content": "We open "}
    reply = await stored_reply(app, turn.conversation.id)
    assert reply.content == "We open "
    assert reply.metadata_["interrupted"] is True
    assert gateway.stream_closed is True
    assert (await usage_of(app, seeded_chatbot.user_id)).total_messages == 2


async def test_cancelled_stream_before_first_fragment_stores_fallback(app, db, seeded_chatbot):
    service = make_service(app, db, StubGateway(delay=5.0))
    turn = await service.start_stream(seeded_chatbot.id, ChatRequest(session_id="s", content="Hours?"))

    async def consume():
        async for _ in service.finish_stream(turn):
            pass

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    reply = await stored_reply(app, turn.conversation.id)
    assert reply.content == FALLBACK
    assert reply.metadata_ == {"fallback": True, "reason": "interrupted"}


async def test_completed_stream_is_stored_once(app, db, seeded_chatbot):
    service = make_service(app, db, StubGateway())
    turn = await service.start_stream(seeded_chatbot.id, ChatRequest(session_id="s", content="Hi"))

    events = [event async for event in service.finish_stream(turn)]

    assert events[-1]["type"] == "done"
    reply = await stored_reply(app, turn.conversation.id)
    assert reply.id == events[-1]["messageId"]
    assert reply.content == "Hello, visitor"
    assert reply.metadata_ == {"model": "stub-model", "streamed": True}
