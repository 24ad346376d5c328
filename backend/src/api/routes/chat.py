import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from backend.src.api.routes.deps import get_chat_service, get_rate_limiter
from backend.src.schemas.chat import ChatRequest, ChatResponse, ConversationOut
from backend.src.services.chat_service import ChatService
from backend.src.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter()


async def enforce_rate_limit(
    chatbot_id: str,
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    client_ip = request.client.host if request.client else "unknown"
    await limiter.hit(f"{chatbot_id}:{client_ip}")


@router.post(
    "/chat/{chatbot_id}/message",
    response_model=ChatResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
async def send_message(
    chatbot_id: str,
    request_body: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """Visitor message in, assistant reply out. AI failures come back as the chatbot's fallback reply."""
    result = await chat_service.process_message(chatbot_id, request_body)
    return ChatResponse(
        conversation_id=result.conversation_id,
        message_id=result.message_id,
        reply=result.reply,
        fallback=result.fallback,
    )


@router.post("/chat/{chatbot_id}/message/stream", dependencies=[Depends(enforce_rate_limit)])
async def send_message_stream(
    chatbot_id: str,
    request_body: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """Same pipeline, reply delivered as server-sent events."""
    turn = await chat_service.start_stream(chatbot_id, request_body)

    async def event_source():
        yield _sse({"type": "start", "conversationId": turn.conversation.id})
        async for event in chat_service.finish_stream(turn):
            yield _sse(event)

    return StreamingResponse(event_source(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})


@router.post("/chat/conversations/{conversation_id}/end", response_model=ConversationOut)
async def end_conversation(
    conversation_id: str,
    chat_service: ChatService = Depends(get_chat_service),
):
    return await chat_service.end_conversation(conversation_id)


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"
