from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.api.routes.deps import get_current_user
from backend.src.core.errors import NotFoundError
from backend.src.db.session import get_db
from backend.src.models.user import User
from backend.src.schemas.chat import ConversationDetail, ConversationOut, MessageOut
from backend.src.schemas.chatbot import ChatbotCreate, ChatbotOut, ChatbotUpdate, TrainRequest
from backend.src.services.chatbot_service import ChatbotService
from backend.src.services.conversation_store import ConversationStore

router = APIRouter(prefix="/chatbots")


def get_chatbot_service(db: AsyncSession = Depends(get_db)) -> ChatbotService:
    return ChatbotService(db)


# ==========================================
# CHATBOT CRUD
# ==========================================

@router.post("", response_model=ChatbotOut, status_code=status.HTTP_201_CREATED)
async def create_chatbot(
    data: ChatbotCreate,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    return await service.create_chatbot(current_user.id, data)


@router.get("", response_model=List[ChatbotOut])
async def list_chatbots(
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    return await service.list_chatbots(current_user.id)


@router.get("/{chatbot_id}", response_model=ChatbotOut)
async def get_chatbot(
    chatbot_id: str,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    return await service.get_chatbot(chatbot_id, current_user.id)


@router.patch("/{chatbot_id}", response_model=ChatbotOut)
async def update_chatbot(
    chatbot_id: str,
    data: ChatbotUpdate,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    return await service.update_chatbot(chatbot_id, current_user.id, data)


@router.post("/{chatbot_id}/deactivate", response_model=ChatbotOut)
async def deactivate_chatbot(
    chatbot_id: str,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    return await service.set_active(chatbot_id, current_user.id, False)


@router.post("/{chatbot_id}/activate", response_model=ChatbotOut)
async def activate_chatbot(
    chatbot_id: str,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    return await service.set_active(chatbot_id, current_user.id, True)


@router.post("/{chatbot_id}/train", response_model=ChatbotOut)
async def train_chatbot(
    chatbot_id: str,
    data: TrainRequest,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    return await service.train_chatbot(chatbot_id, current_user.id, data.entries)


@router.delete("/{chatbot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chatbot(
    chatbot_id: str,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    await service.delete_chatbot(chatbot_id, current_user.id)


# ==========================================
# CONVERSATION HISTORY (owner view)
# ==========================================

@router.get("/{chatbot_id}/conversations", response_model=List[ConversationOut])
async def list_conversations(
    chatbot_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
):
    return await service.list_conversations(chatbot_id, current_user.id, limit=limit, offset=offset)


@router.get("/{chatbot_id}/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    chatbot_id: str,
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
    db: AsyncSession = Depends(get_db),
):
    conversation = await service.get_owned_conversation(conversation_id, current_user.id)
    if conversation.chatbot_id != chatbot_id:
        raise NotFoundError("Conversation not found", conversation_id=conversation_id)

    messages = await ConversationStore(db).list_messages(conversation_id)
    detail = ConversationOut.model_validate(conversation).model_dump()
    return ConversationDetail(**detail, messages=[MessageOut.model_validate(m) for m in messages])


@router.post("/{chatbot_id}/conversations/{conversation_id}/end", response_model=ConversationOut)
async def end_conversation(
    chatbot_id: str,
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    service: ChatbotService = Depends(get_chatbot_service),
    db: AsyncSession = Depends(get_db),
):
    conversation = await service.get_owned_conversation(conversation_id, current_user.id)
    if conversation.chatbot_id != chatbot_id:
        raise NotFoundError("Conversation not found", conversation_id=conversation_id)
    return await ConversationStore(db).end_conversation(conversation_id)

