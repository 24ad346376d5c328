from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from backend.src.core.config import Settings, settings
from backend.src.db.session import get_db
from backend.src.models.user import User
from backend.src.services.ai_gateway import AIGateway
from backend.src.services.chat_service import ChatService
from backend.src.services.chatbot_cache import ChatbotConfigCache
from backend.src.services.rate_limiter import RateLimiter
from backend.src.services.realtime import ConnectionManager, RealtimeNotifier
from backend.src.utils.auth import decode_access_token

# Tells Swagger UI where tokens come from (the login route under the API prefix)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")


# --- Process-wide resources, created once in the app lifespan ---

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> AIGateway:
    return request.app.state.ai_gateway


def get_cache(request: Request) -> ChatbotConfigCache:
    return request.app.state.chatbot_cache


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connection_manager


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_notifier(manager: ConnectionManager = Depends(get_connection_manager)) -> RealtimeNotifier:
    return RealtimeNotifier(manager)


def get_chat_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: ChatbotConfigCache = Depends(get_cache),
    gateway: AIGateway = Depends(get_gateway),
    notifier: RealtimeNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_app_settings),
) -> ChatService:
    return ChatService(
        db,
        cache=cache,
        gateway=gateway,
        notifier=notifier,
        context_window=settings.CONTEXT_WINDOW_MESSAGES,
        session_factory=request.app.state.sessionmaker,
    )


# --- Authentication ---

async def resolve_user(token: str, db: AsyncSession, settings: Settings) -> User | None:
    """Returns the active user a bearer token belongs to, or None."""
    try:
        payload = decode_access_token(token, settings.SECRET_KEY)
    except JWTError:
        return None
    user_id = payload.get("sub")
    if user_id is None:
        return None

    result = await db.execute(select(User).where(User.id == str(user_id)))
    user = result.scalars().first()
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User:
    """Runs before every protected route: verifies the token and loads the user."""
    user = await resolve_user(token, db, settings)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user
