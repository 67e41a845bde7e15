from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from stepwise.api.fastapi.middlewares.auth import require_admin
from stepwise.core.config import settings
from stepwise.models.db.users import User
from stepwise.models.enums import UserRole
from stepwise.models.schemas.users import UserRead, UserStatusUpdate
from stepwise.services.admin.admin_service import AdminService
from stepwise.utils.response import paginated_response, success_response

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
)


@router.get("/users")
async def list_users(
    search: Optional[str] = None,
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    admin: User = Depends(require_admin),
    admin_service: AdminService = Depends(AdminService),
):
    """List every user account (admins only)"""
    users, total = admin_service.list_users(search, role, is_active, page, limit)
    return paginated_response([UserRead.model_validate(u) for u in users], page, limit, total)


@router.patch("/users/{user_id}/status")
async def set_user_status(
    user_id: UUID,
    payload: UserStatusUpdate,
    admin: User = Depends(require_admin),
    admin_service: AdminService = Depends(AdminService),
):
    """Activate or deactivate a user account"""
    user = admin_service.set_user_status(user_id, payload.is_active, admin)
    return success_response(UserRead.model_validate(user), "User status updated")
