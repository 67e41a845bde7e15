from unittest.mock import MagicMock

import pytest
from fastapi.security import HTTPAuthorizationCredentials

from stepwise.api.fastapi.middlewares.auth import IsAuthenticated, get_current_user, require_admin
from stepwise.models.enums import UserRole
from stepwise.utils.exception import AccessDeniedError, AuthenticationError


def _supabase_for(email):
    supabase = MagicMock()
    supabase.auth.get_user.return_value = MagicMock(user=MagicMock(email=email))
    return supabase


def _bearer(token="header-token"):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestIsAuthenticated:

    def test_resolves_bearer_token_to_local_user(self, db_session, user):
        request = MagicMock()
        supabase = _supabase_for(user.email)

        resolved = get_current_user(request, credentials=_bearer(), access_token=None, db=db_session, supabase=supabase)

        assert resolved.user_id == user.user_id
        assert request.state.user is resolved
        supabase.auth.get_user.assert_called_once_with("header-token")

    def test_falls_back_to_cookie(self, db_session, user):
        supabase = _supabase_for(user.email)

        get_current_user(MagicMock(), credentials=None, access_token="cookie-token", db=db_session, supabase=supabase)

        supabase.auth.get_user.assert_called_once_with("cookie-token")

    def test_missing_token(self, db_session):
        with pytest.raises(AuthenticationError):
            get_current_user(MagicMock(), credentials=None, access_token=None, db=db_session, supabase=MagicMock())

    def test_rejected_token(self, db_session):
        supabase = MagicMock()
        supabase.auth.get_user.side_effect = Exception("jwt expired")

        with pytest.raises(AuthenticationError) as excinfo:
            get_current_user(MagicMock(), credentials=_bearer(), access_token=None, db=db_session, supabase=supabase)
        assert excinfo.value.status_code == 401

    def test_unknown_or_inactive_local_user(self, db_session, make_user):
        make_user(email="gone@example.com", is_active=False)

        for email in ("ghost@example.com", "gone@example.com"):
            with pytest.raises(AuthenticationError):
                get_current_user(
                    MagicMock(), credentials=_bearer(), access_token=None, db=db_session, supabase=_supabase_for(email)
                )

    def test_role_gate(self, db_session, user, make_user):
        with pytest.raises(AccessDeniedError):
            require_admin(
                MagicMock(), credentials=_bearer(), access_token=None, db=db_session, supabase=_supabase_for(user.email)
            )

        admin = make_user(email="admin@example.com", role=UserRole.SUPER_ADMIN)
        resolved = require_admin(
            MagicMock(), credentials=_bearer(), access_token=None, db=db_session, supabase=_supabase_for(admin.email)
        )
        assert resolved.user_id == admin.user_id

    def test_roles_are_normalised(self):
        assert IsAuthenticated(roles=[UserRole.ADMIN]).roles == {"ADMIN"}
        assert IsAuthenticated().roles is None
