import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.future import select

from backend.src.api.routes.deps import resolve_user
from backend.src.models.chatbot import Chatbot
from backend.src.models.conversation import Conversation
from backend.src.services.realtime import ConnectionManager, chatbot_topic, conversation_topic

logger = logging.getLogger(__name__)

router = APIRouter()


async def _listen(manager: ConnectionManager, topic: str, websocket: WebSocket):
    """Keeps the socket subscribed until the client goes away. Inbound frames are ignored."""
    await manager.connect(topic, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Listener left %s", topic)
    finally:
        manager.disconnect(topic, websocket)


# --- Owner dashboard: every new message of one chatbot ---
@router.websocket("/ws/chatbots/{chatbot_id}")
async def chatbot_channel(websocket: WebSocket, chatbot_id: str, token: str = Query(...)):
    app = websocket.app
    async with app.state.sessionmaker() as db:
        user = await resolve_user(token, db, app.state.settings)
        owned = False
        if user is not None:
            result = await db.execute(select(Chatbot.id).where(Chatbot.id == chatbot_id, Chatbot.user_id == user.id))
            owned = result.scalar_one_or_none() is not None

    if not owned:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await _listen(app.state.connection_manager, chatbot_topic(chatbot_id), websocket)


# --- Widget: messages of the visitor's own conversation ---
@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_channel(websocket: WebSocket, conversation_id: str):
    app = websocket.app
    async with app.state.sessionmaker() as db:
        result = await db.execute(select(Conversation.id).where(Conversation.id == conversation_id))
        exists = result.scalar_one_or_none() is not None

    if not exists:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await _listen(app.state.connection_manager, conversation_topic(conversation_id), websocket)
