from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from supabase import Client

from stepwise.models.db.users import User
from stepwise.models.schemas.users import UserRegister
from stepwise.services.executions.helpers import utcnow
from stepwise.utils.logging.otel_logger import logger


class UserHelpers:
    def __init__(self, db: Session, supabase: Client):
        self.db = db
        self.supabase = supabase

    def _user_exists(self, email: str) -> Optional[dict]:
        """Return the id and email of the local user with ``email``, if any."""
        user = self.db.query(User).filter(User.email == email).first()
        if not user:
            return None
        return {
            "user_id": str(user.user_id),
            "email": user.email,
            "is_active": user.is_active,
        }

    def _create_supabase_user(self, email: str, password: str) -> dict:
        """Create user in Supabase Auth"""
        try:
            auth_response = self.supabase.auth.sign_up({
                "email": email,
                "password": password,
            })
        except Exception as e:
            logger.error(f"Supabase registration error: {e}")
            return {"status": "failure", "message": f"Authentication service error: {str(e)}"}

        if not getattr(auth_response, "user", None):
            return {
                "status": "failure",
                "message": "Supabase authentication failed - invalid response structure",
            }

        if not getattr(auth_response, "session", None):
            logger.info(f"User created but email confirmation required for: {auth_response.user.email}")
            return {
                "status": "success",
                "supabase_user_id": str(auth_response.user.id),
                "requires_confirmation": True,
            }

        logger.info(f"Supabase sign-up successful for user: {auth_response.user.email}")
        return {
            "status": "success",
            "supabase_user_id": str(auth_response.user.id),
            "access_token": auth_response.session.access_token,
            "refresh_token": auth_response.session.refresh_token,
        }

    def _create_local_user(self, register_request: UserRegister, supabase_user_id: str) -> dict:
        """Create user record in local database"""
        now = utcnow()
        new_user = User(
            email=register_request.email,
            supabase_user_id=supabase_user_id,
            first_name=register_request.first_name,
            last_name=register_request.last_name,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(new_user)
            self.db.commit()
            self.db.refresh(new_user)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error creating local user {register_request.email}: {e}")
            return {"status": "failure", "message": "Database error while creating the user"}

        return {
            "status": "success",
            "user": {
                "user_id": str(new_user.user_id),
                "email": new_user.email,
            },
        }

    def _authenticate_with_supabase(self, email: str, password: str) -> dict:
        """Authenticate user with Supabase"""
        try:
            auth_response = self.supabase.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except Exception as e:
            logger.error(f"Supabase login error: {e}")
            return {"status": "failure", "message": "Invalid credentials"}

        if not getattr(auth_response, "user", None):
            return {"status": "failure", "message": "Invalid credentials"}
        if not getattr(auth_response, "session", None):
            return {"status": "failure", "message": "Authentication failed - no session created"}

        logger.info(f"Login successful for user: {auth_response.user.email}")
        return {
            "status": "success",
            "access_token": auth_response.session.access_token,
            "refresh_token": auth_response.session.refresh_token,
        }

    def _update_last_login(self, email: str) -> None:
        """Stamp the user's last login"""
        user = self.db.query(User).filter(User.email == email).first()
        if not user:
            return
        now = utcnow()
        user.last_login = now
        user.updated_at = now
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating last login for {email}: {e}")

    def _logout(self) -> None:
        """Sign the current session out of Supabase"""
        try:
            self.supabase.auth.sign_out()
        except Exception as e:
            logger.warning(f"Supabase sign out failed: {e}")
