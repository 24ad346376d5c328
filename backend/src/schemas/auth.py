from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from backend.src.schemas.base import CamelModel
from backend.src.schemas.chat import ConversationDetail
from backend.src.schemas.chatbot import ChatbotOut


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str | None = None


class UserUpdate(BaseModel):
    full_name: str | None = None
    password: str | None = Field(None, min_length=8)


class Token(BaseModel):
    access_token: str
    token_type: str


class UserOut(CamelModel):
    id: str
    email: str
    full_name: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[datetime] = None


class UsageStatsOut(CamelModel):
    messages_this_month: int = 0
    total_messages: int = 0
    chatbots_created: int = 0
    storage_used: int = 0
    last_active: Optional[datetime] = None


class UserUsageOut(UsageStatsOut):
    user_id: str


class UserPage(CamelModel):
    users: List[UserOut]
    total_count: int
    current_page: int
    total_pages: int


class RoleUpdate(BaseModel):
    role: Literal["user", "admin"]


class ResetResult(CamelModel):
    reset: int


class ChatbotExport(ChatbotOut):
    conversations: List[ConversationDetail] = []


class UserDataExport(CamelModel):
    """Everything stored for one account."""

    user: UserOut
    usage: UsageStatsOut
    chatbots: List[ChatbotExport] = []
