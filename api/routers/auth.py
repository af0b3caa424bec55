from fastapi import APIRouter, Depends, Request, status

from api.dependencies import get_auth_service, get_current_user
from api.schemas.responses import ok
from core.logging import get_api_logger_safe
from services.auth.models import (
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdateRequest,
    RefreshTokenRequest,
    RegisterRequest,
    SmartAPILoginRequest,
    User,
)
from services.auth.service import AuthService

router = APIRouter(prefix="/auth", tags=["Authentication"])

api_logger = get_api_logger_safe("auth_api")


def _session_payload(user: User, tokens) -> dict:
    return {
        "user": user.public_profile(),
        "token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    user, tokens = await auth_service.register(body)
    return ok(_session_payload(user, tokens), "User registered successfully")


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    user, tokens = await auth_service.login(body)
    api_logger.info("Login succeeded",
                    user_id=user.id,
                    client_ip=request.client.host if request.client else "unknown")
    return ok(_session_payload(user, tokens), "Login successful")


@router.post("/refresh-token")
async def refresh_token(
    body: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    tokens = await auth_service.refresh_token(body.refresh_token)
    return ok({"token": tokens.access_token, "refresh_token": tokens.refresh_token},
              "Token refreshed successfully")


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return ok({"user": user.public_profile()})


@router.put("/profile")
async def update_profile(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    user = await auth_service.update_profile(user, body)
    return ok({"user": user.public_profile()}, "Profile updated successfully")


@router.put("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.change_password(user, body)
    return ok(message="Password changed successfully")


@router.post("/smartapi-login")
async def smartapi_login(
    body: SmartAPILoginRequest,
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = await auth_service.smartapi_login(user, body.password, body.totp)
    return ok(result, "SmartAPI login successful")


@router.post("/refresh-smartapi")
async def refresh_smartapi(
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = await auth_service.refresh_smartapi(user)
    return ok(result, "SmartAPI token refreshed successfully")


@router.get("/smartapi-status")
async def smartapi_status(
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    return ok(await auth_service.smartapi_status(user))


@router.post("/logout")
async def logout(
    user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.logout(user)
    return ok(message="Logged out successfully")
