from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import Depends
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stepwise.core.database import get_db
from stepwise.models.db.users import User
from stepwise.models.enums import UserRole
from stepwise.services.executions.helpers import utcnow
from stepwise.utils.exception import AccessDeniedError, DatabaseError, UserNotFoundError
from stepwise.utils.logging.otel_logger import logger


class AdminService:
    def __init__(self, db: Session = Depends(get_db)):
        self.db = db

    def list_users(
        self,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[User], int]:
        query = select(User)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(User.email.ilike(pattern), User.first_name.ilike(pattern), User.last_name.ilike(pattern))
            )
        if role:
            query = query.where(User.role == role.value)
        if is_active is not None:
            query = query.where(User.is_active == is_active)

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        users = self.db.scalars(
            query.order_by(User.created_at.desc(), User.user_id).offset((page - 1) * limit).limit(limit)
        ).all()
        return list(users), total

    def set_user_status(self, user_id: UUID, is_active: bool, acting_user: User) -> User:
        """Activate or deactivate an account. Admins cannot deactivate themselves or a super admin."""
        user = self.db.get(User, user_id)
        if not user:
            raise UserNotFoundError("User not found.")
        if user.user_id == acting_user.user_id and not is_active:
            raise AccessDeniedError("You cannot deactivate your own account")
        if user.role == UserRole.SUPER_ADMIN.value and acting_user.role != UserRole.SUPER_ADMIN.value:
            raise AccessDeniedError("Only a super admin can change another super admin")

        user.is_active = is_active
        user.updated_at = utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error updating status of user {user_id}: {str(e)}")
            raise DatabaseError("A database error occurred while updating the user.")
        self.db.refresh(user)
        logger.info(f"User {user.email} {'activated' if is_active else 'deactivated'} by {acting_user.email}")
        return user
