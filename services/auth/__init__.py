"""Dashboard accounts, application JWTs and SmartAPI session handling."""

from .service import AuthService
from .repository import SqlUserRepository
from .models import (
    BrokerSession,
    User,
    RegisterRequest,
    LoginRequest,
    SmartAPILoginRequest,
    RefreshTokenRequest,
    ProfileUpdateRequest,
    ChangePasswordRequest,
    TokenPair,
)

__all__ = [
    "AuthService",
    "SqlUserRepository",
    "BrokerSession",
    "User",
    "RegisterRequest",
    "LoginRequest",
    "SmartAPILoginRequest",
    "RefreshTokenRequest",
    "ProfileUpdateRequest",
    "ChangePasswordRequest",
    "TokenPair",
]
