"""Authentication models: application users, broker sessions and request bodies."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # Databases without tz support hand back naive datetimes; treat as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BrokerSession(BaseModel):
    """SmartAPI tokens issued by ``generateSession`` / ``generateTokens``."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    feed_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_valid(self) -> bool:
        if not self.access_token or self.expires_at is None:
            return False
        return _utc(self.expires_at) > datetime.now(timezone.utc)

    def time_to_expiry(self) -> float:
        if self.expires_at is None:
            return 0.0
        delta = _utc(self.expires_at) - datetime.now(timezone.utc)
        return max(0.0, delta.total_seconds())


class User(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    client_code: str
    name: str
    email: str
    phone: str
    hashed_password: str
    broker_session: BrokerSession = Field(default_factory=BrokerSession)
    preferences: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    is_verified: bool = False
    last_login: Optional[datetime] = None
    login_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def has_valid_broker_session(self) -> bool:
        return self.broker_session.is_valid()

    def public_profile(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_code": self.client_code,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "preferences": self.preferences,
            "is_verified": self.is_verified,
            "last_login": self.last_login,
            "login_count": self.login_count,
            "created_at": self.created_at,
            "has_smartapi_session": self.has_valid_broker_session(),
        }


class RegisterRequest(BaseModel):
    client_code: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN)
    phone: str = Field(pattern=r"^[0-9]{10}$")
    password: str

    @field_validator("client_code", mode="before")
    @classmethod
    def normalize_client_code(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return normalize_email(v)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return normalize_email(v)


class SmartAPILoginRequest(BaseModel):
    password: str = Field(min_length=1, description="SmartAPI trading PIN/password")
    totp: str = Field(min_length=6, max_length=6, description="Current TOTP code")


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, pattern=r"^[0-9]{10}$")
    preferences: Optional[Dict[str, Any]] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
