from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from backend.src.models.chatbot import DEFAULT_FALLBACK_MESSAGE
from backend.src.schemas.base import CamelModel

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class ChatbotAppearance(CamelModel):
    primary_color: str = Field("#3B82F6", pattern=HEX_COLOR)
    secondary_color: str = Field("#F3F4F6", pattern=HEX_COLOR)
    font_family: str = "Inter, sans-serif"
    border_radius: int = Field(8, ge=0, le=50)
    position: Literal["bottom-right", "bottom-left", "center"] = "bottom-right"
    avatar: Optional[str] = None


class ChatbotSettings(CamelModel):
    max_tokens: int = Field(1000, ge=100, le=4000)
    temperature: float = Field(0.7, ge=0, le=2)
    # Milliseconds of artificial pacing before a reply is emitted
    response_delay: int = Field(1000, ge=0, le=5000)
    fallback_message: str = Field(DEFAULT_FALLBACK_MESSAGE, min_length=1)
    collect_user_info: bool = False


class ChatbotCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    personality: str = Field(..., min_length=1)
    knowledge_base: List[str] = []
    appearance: ChatbotAppearance = ChatbotAppearance()
    settings: ChatbotSettings = ChatbotSettings()

    @field_validator("name", "personality")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class ChatbotUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    personality: Optional[str] = Field(None, min_length=1)
    knowledge_base: Optional[List[str]] = None
    appearance: Optional[ChatbotAppearance] = None
    settings: Optional[ChatbotSettings] = None
    is_active: Optional[bool] = None


class TrainRequest(CamelModel):
    entries: List[str] = Field(..., min_length=1)


class ChatbotOut(CamelModel):
    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    personality: str
    knowledge_base: List[str]
    appearance: ChatbotAppearance
    settings: ChatbotSettings
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
