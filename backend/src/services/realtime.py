import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

NEW_MESSAGE_EVENT = "new_message"


def chatbot_topic(chatbot_id: str) -> str:
    return f"chatbot:{chatbot_id}"


def conversation_topic(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class ConnectionManager:
    """
    Topic-based fan-out to connected WebSockets.
    Delivery is at-most-once: nothing is queued, and a socket that fails a send
    is dropped. Late subscribers only see events published after they join.
    """

    def __init__(self):
        self.topics: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, topic: str, websocket: WebSocket):
        await websocket.accept()
        self.topics[topic].add(websocket)
        logger.debug("Subscribed socket to %s (%d listeners)", topic, len(self.topics[topic]))

    def disconnect(self, topic: str, websocket: WebSocket):
        listeners = self.topics.get(topic)
        if not listeners:
            return
        listeners.discard(websocket)
        if not listeners:
            del self.topics[topic]

    def listener_count(self, topic: str) -> int:
        return len(self.topics.get(topic, ()))

    async def publish(self, topic: str, payload: Dict[str, Any]):
        for websocket in list(self.topics.get(topic, ())):
            try:
                await websocket.send_json(payload)
            except Exception as e:
                logger.info("Dropping listener on %s after failed send: %s", topic, type(e).__name__)
                self.disconnect(topic, websocket)


class RealtimeNotifier:
    """Publishes new-message events to the conversation and dashboard channels."""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    async def publish(self, topic: str, payload: Dict[str, Any]):
        try:
            await self.manager.publish(topic, payload)
        except Exception:
            # Notification is best-effort, the message is already stored
            logger.exception("Realtime publish to %s failed", topic)

    async def publish_message(self, chatbot_id: str, conversation_id: str, role: str, content: str, timestamp: datetime):
        event = {
            "event": NEW_MESSAGE_EVENT,
            "data": {
                "conversationId": conversation_id,
                "role": role,
                "content": content,
                "timestamp": timestamp.isoformat(),
            },
        }
        await self.publish(conversation_topic(conversation_id), event)
        await self.publish(chatbot_topic(chatbot_id), event)
