import os
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from backend.src.api.routes.deps import get_app_settings, get_current_user
from backend.src.core.config import Settings
from backend.src.core.errors import NotFoundError, ValidationError
from backend.src.db.session import get_db
from backend.src.models.chatbot import Chatbot
from backend.src.models.user import User
from backend.src.schemas.base import CamelModel
from backend.src.services.chatbot_service import ChatbotService
from backend.src.services.widget_service import build_widget_config, generate_embed_code

router = APIRouter(prefix="/widget")


class EmbedCodeRequest(CamelModel):
    position: Optional[str] = None
    title: Optional[str] = None
    welcome_message: Optional[str] = None
    theme: Optional[dict] = None


# --- Public: the widget script itself ---
@router.get("/chat-widget.js")
async def serve_widget(settings: Settings = Depends(get_app_settings)):
    if not os.path.exists(settings.WIDGET_BUNDLE_PATH):
        raise NotFoundError("Widget file not found")
    return FileResponse(
        settings.WIDGET_BUNDLE_PATH,
        media_type="application/javascript",
        headers={"Cache-Control": "public, max-age=3600"},
    )


# --- Public: the widget fetches this before rendering ---
@router.get("/{chatbot_id}/config")
async def get_widget_config(chatbot_id: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Chatbot).where(Chatbot.id == chatbot_id))
    chatbot = result.scalars().first()
    if chatbot is None or not chatbot.is_active:
        raise NotFoundError("Chatbot not found or inactive", chatbot_id=chatbot_id)
    return {"success": True, "data": build_widget_config(chatbot)}


# --- Owner: snippet to paste into a website ---
@router.post("/{chatbot_id}/embed-code")
async def create_embed_code(
    chatbot_id: str,
    request: Request,
    options: EmbedCodeRequest = EmbedCodeRequest(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    chatbot = await ChatbotService(db).get_chatbot(chatbot_id, current_user.id)
    if not chatbot.is_active:
        raise ValidationError("Chatbot is not active", chatbot_id=chatbot_id)

    server_url = settings.SERVER_URL or str(request.base_url).rstrip("/")
    embed_code = generate_embed_code(chatbot, server_url, settings.API_V1_STR, options.model_dump(by_alias=True, exclude_none=True))
    return {
        "success": True,
        "data": {"embedCode": embed_code, "chatbotId": chatbot_id},
    }
