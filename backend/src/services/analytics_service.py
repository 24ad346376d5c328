from datetime import date, datetime, timedelta, timezone
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from backend.src.models.chatbot import Chatbot
from backend.src.models.conversation import Conversation, Message, MessageRole
from backend.src.schemas.analytics import ChatbotAnalytics, ChatbotSummary, DailyVolume, DashboardOverview
from backend.src.schemas.auth import UsageStatsOut
from backend.src.services.chatbot_service import ChatbotService
from backend.src.services.usage_service import UsageService


class AnalyticsService:
    """Dashboard numbers computed with aggregate queries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _daily_volume(self, chatbot_id: str, days: int) -> List[DailyVolume]:
        today = datetime.now(timezone.utc).date()
        first_day = today - timedelta(days=days - 1)
        since = datetime.combine(first_day, datetime.min.time(), tzinfo=timezone.utc)

        result = await self.db.execute(
            select(Conversation.started_at).where(
                Conversation.chatbot_id == chatbot_id,
                Conversation.started_at >= since,
            )
        )
        counts: Dict[date, int] = {first_day + timedelta(days=i): 0 for i in range(days)}
        for (started_at,) in result.all():
            day = started_at.date()
            if day in counts:
                counts[day] += 1
        return [DailyVolume(day=day, conversations=n) for day, n in counts.items()]

    async def chatbot_analytics(self, chatbot_id: str, user_id: str, days: int = 7) -> ChatbotAnalytics:
        await ChatbotService(self.db).get_chatbot(chatbot_id, user_id)

        conv_row = (
            await self.db.execute(
                select(
                    func.count(Conversation.id),
                    func.count(Conversation.id).filter(Conversation.ended_at.is_(None)),
                ).where(Conversation.chatbot_id == chatbot_id)
            )
        ).one()
        total_conversations, open_conversations = conv_row

        msg_row = (
            await self.db.execute(
                select(
                    func.count(Message.id),
                    func.count(Message.id).filter(
                        Message.role == MessageRole.ASSISTANT.value,
                        Message.metadata_["fallback"].as_boolean().is_(True),
                    ),
                )
                .join(Conversation, Conversation.id == Message.conversation_id)
                .where(Conversation.chatbot_id == chatbot_id)
            )
        ).one()
        total_messages, fallback_replies = msg_row

        return ChatbotAnalytics(
            chatbot_id=chatbot_id,
            total_conversations=total_conversations,
            open_conversations=open_conversations,
            total_messages=total_messages,
            average_messages_per_conversation=round(total_messages / total_conversations, 2) if total_conversations else 0.0,
            fallback_replies=fallback_replies or 0,
            daily_volume=await self._daily_volume(chatbot_id, days),
        )

    async def overview(self, user_id: str) -> DashboardOverview:
        conversations = (
            select(Conversation.chatbot_id, func.count(Conversation.id).label("n"))
            .group_by(Conversation.chatbot_id)
            .subquery()
        )
        messages = (
            select(Conversation.chatbot_id, func.count(Message.id).label("n"))
            .join(Message, Message.conversation_id == Conversation.id)
            .group_by(Conversation.chatbot_id)
            .subquery()
        )
        result = await self.db.execute(
            select(
                Chatbot.id,
                Chatbot.name,
                Chatbot.is_active,
                func.coalesce(conversations.c.n, 0),
                func.coalesce(messages.c.n, 0),
            )
            .outerjoin(conversations, conversations.c.chatbot_id == Chatbot.id)
            .outerjoin(messages, messages.c.chatbot_id == Chatbot.id)
            .where(Chatbot.user_id == user_id)
            .order_by(Chatbot.name)
        )
        summaries = [
            ChatbotSummary(chatbot_id=row[0], name=row[1], is_active=row[2], conversations=row[3], messages=row[4])
            for row in result.all()
        ]
        stats = await UsageService(self.db).get_stats(user_id)

        return DashboardOverview(
            total_chatbots=len(summaries),
            active_chatbots=sum(1 for s in summaries if s.is_active),
            total_conversations=sum(s.conversations for s in summaries),
            total_messages=sum(s.messages for s in summaries),
            chatbots=summaries,
            usage=UsageStatsOut.model_validate(stats),
        )
