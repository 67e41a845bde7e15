from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session
from supabase import Client

from stepwise.core.database import get_db
from stepwise.core.supabase_client import get_supabase_client
from stepwise.models.db.users import User
from stepwise.models.schemas.users import UserLogin, UserRead, UserRegister
from stepwise.services.users.helpers import UserHelpers
from stepwise.utils.exception import (
    AccessDeniedError,
    AppException,
    AuthenticationError,
    ConflictError,
    UserNotFoundError,
    ValidationError,
)
from stepwise.utils.logging.otel_logger import logger


class UserService:
    def __init__(
        self,
        db: Session = Depends(get_db),
        supabase: Client = Depends(get_supabase_client),
    ):
        self.db = db
        self.supabase = supabase
        self.helpers = UserHelpers(self.db, self.supabase)

    def register(self, register_request: UserRegister) -> dict:
        """
        Handles user registration by creating a user in Supabase and a corresponding
        record in the local database.
        """
        if self.helpers._user_exists(register_request.email):
            raise ConflictError("User with this email already exists.")

        auth_response = self.helpers._create_supabase_user(
            register_request.email, register_request.password
        )
        if auth_response["status"] == "failure":
            raise ValidationError(f"Authentication error: {auth_response['message']}")

        local = self.helpers._create_local_user(register_request, auth_response["supabase_user_id"])
        if local["status"] == "failure":
            raise AppException(local["message"], status_code=500, code="DATABASE_ERROR")

        if auth_response.get("requires_confirmation"):
            return {
                "requires_confirmation": True,
                "message": "User created successfully. Please check your email for confirmation.",
            }
        return {
            "access_token": auth_response["access_token"],
            "refresh_token": auth_response["refresh_token"],
            "message": "User registered successfully",
        }

    def login(self, login_request: UserLogin) -> dict:
        """
        Handles user login by authenticating with Supabase.
        """
        existing = self.helpers._user_exists(login_request.email)
        if not existing:
            raise UserNotFoundError("User not found.")
        if not existing["is_active"]:
            raise AccessDeniedError("This account has been deactivated.")

        auth_response = self.helpers._authenticate_with_supabase(
            login_request.email, login_request.password
        )
        if auth_response["status"] == "failure":
            raise AuthenticationError(f"Login failed: {auth_response['message']}")

        self.helpers._update_last_login(login_request.email)
        return {
            "access_token": auth_response["access_token"],
            "refresh_token": auth_response["refresh_token"],
        }

    def refresh_token(self, refresh_token: Optional[str]) -> dict:
        """
        Exchanges a refresh token for a new session.
        """
        if not refresh_token:
            raise AuthenticationError("Refresh token is missing")
        try:
            response = self.supabase.auth.refresh_session(refresh_token)
        except Exception as e:
            logger.warning(f"Token refresh rejected: {e}")
            raise AuthenticationError(f"Invalid refresh token: {str(e)}")

        if not getattr(response, "session", None):
            raise AuthenticationError("Could not refresh token")
        return {
            "access_token": response.session.access_token,
            "refresh_token": response.session.refresh_token,
        }

    def whoami(self, current_user: User) -> dict:
        """
        Returns the profile of the currently authenticated user.
        """
        if not current_user:
            raise UserNotFoundError("User not found.")
        return UserRead.model_validate(current_user).model_dump(mode="json")

    def logout(self, current_user: User) -> dict:
        """
        Logs out the currently authenticated user.
        """
        self.helpers._logout()
        logger.info(f"User {current_user.email} logged out")
        return {"message": "Logged out successfully"}
