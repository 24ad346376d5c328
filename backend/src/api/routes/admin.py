from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.api.routes.deps import get_gateway, require_admin
from backend.src.db.session import get_db
from backend.src.models.user import User
from backend.src.schemas.auth import ResetResult, RoleUpdate, UserOut, UserPage, UserUsageOut
from backend.src.services.ai_gateway import AIGateway
from backend.src.services.usage_service import UsageService
from backend.src.services.user_service import UserService

# Every route here is admin-only
router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.get("/ai/health")
async def ai_health(gateway: AIGateway = Depends(get_gateway)):
    """Round-trips a tiny prompt through the configured model."""
    return await gateway.test_connection()


# --- User management ---
@router.get("/users", response_model=UserPage)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    return await UserService(db).list_users(page, limit)


@router.get("/users/usage-stats", response_model=List[UserUsageOut])
async def list_usage_stats(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    return await UsageService(db).list_all(limit, offset)


@router.post("/users/reset-monthly-stats", response_model=ResetResult)
async def reset_monthly_stats(db: AsyncSession = Depends(get_db)):
    """Zeroes messages_this_month for every user at the start of a billing period."""
    return {"reset": await UsageService(db).reset_monthly()}


@router.patch("/users/{user_id}/role", response_model=UserOut)
async def update_user_role(
    user_id: str,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await UserService(db).set_role(user_id, body.role)
