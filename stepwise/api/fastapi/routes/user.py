from typing import Optional

from fastapi import APIRouter, Body, Cookie, Depends, Response

from stepwise.api.fastapi.middlewares.auth import get_current_user
from stepwise.core.config import settings
from stepwise.models.db.users import User
from stepwise.models.schemas.users import RefreshRequest, UserLogin, UserRegister
from stepwise.services.users.user_service import UserService
from stepwise.utils.response import success_response

router = APIRouter(
    prefix="/users",
    tags=["Users"],
)


def set_auth_cookies(response: Response, access_token: Optional[str], refresh_token: Optional[str]):
    if access_token:
        response.set_cookie(
            key="access_token",
            value=access_token,
            httponly=True,
            samesite="strict",
            secure=settings.is_production,
            max_age=60 * 60,
        )
    if refresh_token:
        response.set_cookie(
            key="refresh_token",
            value=refresh_token,
            httponly=True,
            samesite="strict",
            secure=settings.is_production,
            max_age=60 * 60 * 24 * 7,
        )


def _tokens(token_data: dict) -> dict:
    return {
        "access_token": token_data.get("access_token"),
        "refresh_token": token_data.get("refresh_token"),
        "token_type": "bearer",
    }


@router.post("/register", status_code=201)
async def register(
    register_request: UserRegister,
    response: Response,
    user_service: UserService = Depends(UserService),
):
    """
    User registration endpoint.
    On success, returns the tokens and also sets them as HttpOnly cookies.
    """
    token_data = user_service.register(register_request)

    # If registration requires email confirmation, tokens are not issued yet
    if token_data.get("requires_confirmation"):
        return success_response({"requires_confirmation": True}, token_data.get("message"))

    set_auth_cookies(response, token_data.get("access_token"), token_data.get("refresh_token"))
    return success_response(_tokens(token_data), token_data.get("message"))


@router.post("/login")
async def login(
    login_request: UserLogin,
    response: Response,
    user_service: UserService = Depends(UserService),
):
    """
    User login endpoint.
    On success, returns the tokens and also sets them as HttpOnly cookies.
    """
    token_data = user_service.login(login_request)
    set_auth_cookies(response, token_data.get("access_token"), token_data.get("refresh_token"))
    return success_response(_tokens(token_data), "Logged in successfully")


@router.post("/refresh")
async def refresh(
    response: Response,
    body: Optional[RefreshRequest] = Body(None),
    refresh_token: Optional[str] = Cookie(None),
    user_service: UserService = Depends(UserService),
):
    """
    Token refresh endpoint.
    Uses the refresh token from the body, falling back to the cookie.
    """
    token = (body.refresh_token if body else None) or refresh_token
    token_data = user_service.refresh_token(token)
    set_auth_cookies(response, token_data.get("access_token"), token_data.get("refresh_token"))
    return success_response(_tokens(token_data), "Tokens refreshed")


@router.get("/whoami")
async def whoami(
    authenticated_user: User = Depends(get_current_user),
    user_service: UserService = Depends(UserService),
):
    """
    Get the profile for the currently authenticated user.
    """
    return success_response(user_service.whoami(authenticated_user))


@router.post("/logout")
async def logout(
    response: Response,
    user_service: UserService = Depends(UserService),
    authenticated_user: User = Depends(get_current_user),
):
    """
    Logout the currently authenticated user.
    """
    result = user_service.logout(authenticated_user)
    response.delete_cookie("access_token")
    response.delete_cookie("refresh_token")
    return success_response(message=result["message"])
