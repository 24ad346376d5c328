from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field, field_validator

from backend.src.models.conversation import ConversationStatus
from backend.src.schemas.base import CamelModel


class ChatRequest(CamelModel):
    session_id: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, max_length=10000)
    user_info: Optional[Dict[str, Any]] = None

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message content cannot be empty")
        return v


class ChatResponse(CamelModel):
    conversation_id: str
    message_id: int
    reply: str
    fallback: bool = False


class MessageOut(CamelModel):
    id: int
    conversation_id: str
    role: str
    content: str
    timestamp: datetime
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("metadata_", "metadata"))


class ConversationOut(CamelModel):
    id: str
    chatbot_id: str
    session_id: str
    user_info: Optional[Dict[str, Any]] = None
    status: ConversationStatus
    started_at: datetime
    ended_at: Optional[datetime] = None


class ConversationDetail(ConversationOut):
    messages: List[MessageOut] = []
