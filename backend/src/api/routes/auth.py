import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from backend.src.api.routes.deps import get_app_settings, get_current_user
from backend.src.core.config import Settings
from backend.src.db.session import get_db
from backend.src.models.user import User
from backend.src.schemas.auth import Token, UsageStatsOut, UserCreate, UserDataExport, UserOut, UserUpdate
from backend.src.services.usage_service import UsageService
from backend.src.services.user_service import UserService
from backend.src.utils.auth import create_access_token, get_password_hash, verify_password

logger = logging.getLogger(__name__)

router = APIRouter()


# --- 1. Registration Endpoint ---
@router.post("/auth/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register(
    user_in: UserCreate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    result = await db.execute(select(User).where(User.email == user_in.email))
    if result.scalars().first():
        raise HTTPException(status_code=400, detail="Email already registered")

    new_user = User(
        email=user_in.email,
        hashed_password=get_password_hash(user_in.password),
        full_name=user_in.full_name,
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)
    logger.info("Registered user %s", new_user.id)

    # Log straight in after registering
    access_token = create_access_token({"sub": new_user.id}, settings.SECRET_KEY, settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return {"access_token": access_token, "token_type": "bearer"}


# --- 2. Login Endpoint ---
@router.post("/auth/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    result = await db.execute(select(User).where(User.email == form_data.username))
    user = result.scalars().first()

    if not user or not user.is_active or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token({"sub": user.id}, settings.SECRET_KEY, settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return {"access_token": access_token, "token_type": "bearer"}


# --- 3. Profile ---
@router.get("/auth/me", response_model=UserOut)
async def read_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.patch("/auth/me", response_model=UserOut)
async def update_me(
    update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if update.full_name is not None:
        current_user.full_name = update.full_name
    if update.password:
        current_user.hashed_password = get_password_hash(update.password)
    await db.commit()
    await db.refresh(current_user)
    return current_user


@router.delete("/auth/me", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Soft-disables the account; data stays in place."""
    current_user.is_active = False
    await db.commit()
    logger.info("Deactivated user %s", current_user.id)


@router.get("/auth/me/usage", response_model=UsageStatsOut)
async def read_my_usage(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await UsageService(db).get_stats(current_user.id)


@router.get("/auth/me/export", response_model=UserDataExport)
async def export_my_data(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Everything stored for the account: profile, usage and all chatbots with their conversations."""
    return await UserService(db).export_data(current_user)
