from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.api.routes.deps import get_current_user
from backend.src.db.session import get_db
from backend.src.models.user import User
from backend.src.schemas.analytics import ChatbotAnalytics, DashboardOverview
from backend.src.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/analytics")


@router.get("/overview", response_model=DashboardOverview)
async def dashboard_overview(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AnalyticsService(db).overview(current_user.id)


@router.get("/chatbots/{chatbot_id}", response_model=ChatbotAnalytics)
async def chatbot_analytics(
    chatbot_id: str,
    days: int = Query(7, ge=1, le=90),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AnalyticsService(db).chatbot_analytics(chatbot_id, current_user.id, days=days)
