from typing import Optional, Sequence

from fastapi import Cookie, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from supabase import Client

from stepwise.core.database import get_db
from stepwise.core.supabase_client import get_supabase_client
from stepwise.models.db.users import User
from stepwise.models.enums import UserRole
from stepwise.utils.exception import AccessDeniedError, AuthenticationError
from stepwise.utils.logging.otel_logger import logger

bearer_scheme = HTTPBearer(auto_error=False)


class IsAuthenticated:
    """
    Dependency resolving the caller to a local, active user.

    The access token is taken from the ``Authorization: Bearer`` header, or
    from the ``access_token`` cookie set at login, and validated with
    Supabase. When ``roles`` is given the user must also hold one of them.
    """

    def __init__(self, roles: Optional[Sequence[UserRole]] = None):
        self.roles = {role.value for role in roles} if roles else None

    def __call__(
        self,
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        access_token: Optional[str] = Cookie(None),
        db: Session = Depends(get_db),
        supabase: Client = Depends(get_supabase_client),
    ) -> User:
        """
        Raises:
            AuthenticationError: If the token is missing or invalid, or the user is unknown or inactive.
            AccessDeniedError: If the user lacks the required role.

        Returns:
            User: The authenticated user object from the database.
        """
        token = credentials.credentials if credentials else access_token
        if not token:
            raise AuthenticationError("Authentication token is missing")

        try:
            auth_response = supabase.auth.get_user(token)
        except Exception as e:
            logger.warning(f"Token validation failed: {e}")
            raise AuthenticationError("Invalid or expired token")

        supabase_user = getattr(auth_response, "user", None)
        if not supabase_user:
            raise AuthenticationError("Invalid token or user not found")

        local_user = db.query(User).filter(User.email == supabase_user.email).first()
        if not local_user:
            raise AuthenticationError("Authenticated user not found in our database")
        if not local_user.is_active:
            raise AuthenticationError("This account has been deactivated")
        if self.roles and local_user.role not in self.roles:
            raise AccessDeniedError("You do not have permission to perform this action")

        request.state.user = local_user
        return local_user


get_current_user = IsAuthenticated()
require_admin = IsAuthenticated(roles=(UserRole.ADMIN, UserRole.SUPER_ADMIN))
