import pytest
from unittest.mock import MagicMock, patch

from stepwise.services.users.user_service import UserService
from stepwise.models.schemas.users import UserRegister, UserLogin
from stepwise.utils.exception import (
    AccessDeniedError,
    AppException,
    AuthenticationError,
    ConflictError,
    UserNotFoundError,
    ValidationError,
)


class TestUserService:

    def setup_method(self):
        """Service with a mocked session, Supabase client and helper layer."""
        self.mock_db = MagicMock()
        self.mock_supabase = MagicMock()

        self.patcher = patch('stepwise.services.users.user_service.UserHelpers')
        self.mock_helpers_class = self.patcher.start()
        self.mock_helpers = MagicMock()
        self.mock_helpers_class.return_value = self.mock_helpers

        self.user_service = UserService(db=self.mock_db, supabase=self.mock_supabase)

        self.test_email = "test@example.com"
        self.test_password = "securePassword123"

    def teardown_method(self):
        self.patcher.stop()

    def test_register_success(self):
        register_request = UserRegister(email=self.test_email, password=self.test_password, first_name="Ada")
        self.mock_helpers._user_exists.return_value = None
        self.mock_helpers._create_supabase_user.return_value = {
            "status": "success",
            "supabase_user_id": "fake-uuid",
            "access_token": "fake-access-token",
            "refresh_token": "fake-refresh-token"
        }
        self.mock_helpers._create_local_user.return_value = {
            "status": "success",
            "user": {"user_id": "local-user-id", "email": self.test_email}
        }

        result = self.user_service.register(register_request)

        self.mock_helpers._user_exists.assert_called_once_with(self.test_email)
        self.mock_helpers._create_supabase_user.assert_called_once_with(self.test_email, self.test_password)
        self.mock_helpers._create_local_user.assert_called_once_with(register_request, "fake-uuid")
        assert result["access_token"] == "fake-access-token"
        assert result["refresh_token"] == "fake-refresh-token"
        assert result["message"] == "User registered successfully"

    def test_register_pending_email_confirmation(self):
        self.mock_helpers._user_exists.return_value = None
        self.mock_helpers._create_supabase_user.return_value = {
            "status": "success",
            "supabase_user_id": "fake-uuid",
            "requires_confirmation": True,
        }
        self.mock_helpers._create_local_user.return_value = {"status": "success", "user": {}}

        result = self.user_service.register(UserRegister(email=self.test_email, password=self.test_password))

        assert result["requires_confirmation"] is True
        assert "access_token" not in result

    def test_register_user_already_exists(self):
        register_request = UserRegister(email=self.test_email, password=self.test_password)
        self.mock_helpers._user_exists.return_value = {
            "user_id": "existing-user-id",
            "email": self.test_email,
            "is_active": True,
        }

        with pytest.raises(ConflictError) as excinfo:
            self.user_service.register(register_request)

        assert excinfo.value.status_code == 409
        assert "already exists" in excinfo.value.message
        self.mock_helpers._create_supabase_user.assert_not_called()
        self.mock_helpers._create_local_user.assert_not_called()

    def test_register_supabase_failure(self):
        self.mock_helpers._user_exists.return_value = None
        self.mock_helpers._create_supabase_user.return_value = {
            "status": "failure",
            "message": "Password too weak"
        }

        with pytest.raises(ValidationError) as excinfo:
            self.user_service.register(UserRegister(email=self.test_email, password=self.test_password))

        assert "Password too weak" in excinfo.value.message
        self.mock_helpers._create_local_user.assert_not_called()

    def test_register_local_failure(self):
        self.mock_helpers._user_exists.return_value = None
        self.mock_helpers._create_supabase_user.return_value = {
            "status": "success",
            "supabase_user_id": "fake-uuid",
            "access_token": "a",
            "refresh_token": "r",
        }
        self.mock_helpers._create_local_user.return_value = {
            "status": "failure",
            "message": "Database error while creating the user"
        }

        with pytest.raises(AppException) as excinfo:
            self.user_service.register(UserRegister(email=self.test_email, password=self.test_password))

        assert excinfo.value.status_code == 500

    def test_login_success(self):
        login_request = UserLogin(email=self.test_email, password=self.test_password)
        self.mock_helpers._user_exists.return_value = {
            "user_id": "existing-user-id",
            "email": self.test_email,
            "is_active": True,
        }
        self.mock_helpers._authenticate_with_supabase.return_value = {
            "status": "success",
            "access_token": "login-access-token",
            "refresh_token": "login-refresh-token"
        }

        result = self.user_service.login(login_request)

        self.mock_helpers._authenticate_with_supabase.assert_called_once_with(self.test_email, self.test_password)
        self.mock_helpers._update_last_login.assert_called_once_with(self.test_email)
        assert result == {"access_token": "login-access-token", "refresh_token": "login-refresh-token"}

    def test_login_user_not_found(self):
        self.mock_helpers._user_exists.return_value = None

        with pytest.raises(UserNotFoundError) as excinfo:
            self.user_service.login(UserLogin(email=self.test_email, password=self.test_password))

        assert excinfo.value.status_code == 404
        self.mock_helpers._authenticate_with_supabase.assert_not_called()

    def test_login_deactivated_user(self):
        self.mock_helpers._user_exists.return_value = {
            "user_id": "existing-user-id",
            "email": self.test_email,
            "is_active": False,
        }

        with pytest.raises(AccessDeniedError):
            self.user_service.login(UserLogin(email=self.test_email, password=self.test_password))

        self.mock_helpers._authenticate_with_supabase.assert_not_called()

    def test_login_authentication_failed(self):
        self.mock_helpers._user_exists.return_value = {
            "user_id": "existing-user-id",
            "email": self.test_email,
            "is_active": True,
        }
        self.mock_helpers._authenticate_with_supabase.return_value = {
            "status": "failure",
            "message": "Invalid credentials"
        }

        with pytest.raises(AuthenticationError) as excinfo:
            self.user_service.login(UserLogin(email=self.test_email, password="wrongPassword"))

        assert excinfo.value.status_code == 401
        assert "Invalid credentials" in excinfo.value.message
        self.mock_helpers._update_last_login.assert_not_called()

    def test_refresh_token(self):
        session = MagicMock(access_token="new-access", refresh_token="new-refresh")
        self.mock_supabase.auth.refresh_session.return_value = MagicMock(session=session)

        result = self.user_service.refresh_token("old-refresh")

        self.mock_supabase.auth.refresh_session.assert_called_once_with("old-refresh")
        assert result == {"access_token": "new-access", "refresh_token": "new-refresh"}

    def test_refresh_token_missing_or_rejected(self):
        with pytest.raises(AuthenticationError):
            self.user_service.refresh_token(None)

        self.mock_supabase.auth.refresh_session.side_effect = Exception("expired")
        with pytest.raises(AuthenticationError):
            self.user_service.refresh_token("stale")

    def test_logout(self):
        current_user = MagicMock(email=self.test_email)

        result = self.user_service.logout(current_user)

        self.mock_helpers._logout.assert_called_once()
        assert result["message"] == "Logged out successfully"
