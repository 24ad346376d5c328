from datetime import date
from typing import List

from backend.src.schemas.auth import UsageStatsOut
from backend.src.schemas.base import CamelModel


class DailyVolume(CamelModel):
    day: date
    conversations: int


class ChatbotAnalytics(CamelModel):
    chatbot_id: str
    total_conversations: int
    open_conversations: int
    total_messages: int
    average_messages_per_conversation: float
    fallback_replies: int
    daily_volume: List[DailyVolume]


class ChatbotSummary(CamelModel):
    chatbot_id: str
    name: str
    is_active: bool
    conversations: int
    messages: int


class DashboardOverview(CamelModel):
    total_chatbots: int
    active_chatbots: int
    total_conversations: int
    total_messages: int
    chatbots: List[ChatbotSummary]
    usage: UsageStatsOut
