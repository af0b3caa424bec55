from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from core.config.settings import Settings
from core.logging import get_audit_logger_safe, get_error_logger_safe
from core.trading.interfaces import BrokerGateway, PortfolioRepository, UserRepository
from core.trading.portfolio_models import Portfolio
from core.utils.exceptions import AuthenticationError, BrokerAPIError, ConflictError, ValidationError
from .models import (
    BrokerSession,
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    TokenPair,
    User,
)
from .security import (
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_token,
    get_password_hash,
    verify_password,
)


class AuthService:
    """Dashboard accounts, application tokens and the per-user SmartAPI session."""

    def __init__(self, settings: Settings, users: UserRepository, gateway: BrokerGateway,
                 portfolios: PortfolioRepository):
        self.settings = settings
        self.users = users
        self.gateway = gateway
        self.portfolios = portfolios
        self.audit_logger = get_audit_logger_safe("auth_audit")
        self.error_logger = get_error_logger_safe("auth_service_errors")

    def _issue_tokens(self, user: User) -> TokenPair:
        claims = {"sub": user.id}
        return TokenPair(
            access_token=create_access_token(claims, self.settings),
            refresh_token=create_refresh_token(claims, self.settings),
        )

    def _check_password_length(self, password: str, message: str) -> None:
        if len(password) < self.settings.auth.password_min_length:
            raise ValidationError(message, field="password")

    async def register(self, request: RegisterRequest) -> Tuple[User, TokenPair]:
        """Create an account and its empty portfolio."""
        min_length = self.settings.auth.password_min_length
        self._check_password_length(request.password, f"Password must be at least {min_length} characters")

        if await self.users.find_by_email_or_client_code(request.email, request.client_code):
            raise ConflictError("User with this email or client code already exists")

        user = User(
            client_code=request.client_code,
            name=request.name.strip(),
            email=request.email,
            phone=request.phone,
            hashed_password=get_password_hash(request.password),
        )
        await self.users.create(user)
        await self.portfolios.save(Portfolio(user_id=user.id))

        self.audit_logger.info("User registered", user_id=user.id, client_code=user.client_code)
        return user, self._issue_tokens(user)

    async def login(self, request: LoginRequest) -> Tuple[User, TokenPair]:
        if not request.email or not request.password:
            raise ValidationError("Please provide email and password")

        user = await self.users.find_by_email(request.email)
        if user is None or not verify_password(request.password, user.hashed_password):
            self.audit_logger.warning("Failed login attempt", email=request.email)
            raise AuthenticationError("Invalid email or password")
        if not user.is_active:
            raise AuthenticationError("Account is deactivated. Please contact support.")

        user.last_login = datetime.now(timezone.utc)
        user.login_count += 1
        user.updated_at = user.last_login
        await self.users.save(user)

        self.audit_logger.info("User logged in", user_id=user.id, login_count=user.login_count)
        return user, self._issue_tokens(user)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        if not refresh_token:
            raise ValidationError("Refresh token required")
        payload = decode_token(refresh_token, self.settings, REFRESH_TOKEN_TYPE)
        user = await self.users.get(payload["sub"]) if payload and payload.get("sub") else None
        if user is None or not user.is_active:
            raise AuthenticationError("Invalid refresh token")
        return self._issue_tokens(user)

    async def authenticate(self, token: Optional[str]) -> User:
        """Resolve an application access token to an active user."""
        if not token:
            raise AuthenticationError("Access token required")
        payload = decode_access_token(token, self.settings)
        if not payload or not payload.get("sub"):
            raise AuthenticationError("Invalid token")
        user = await self.users.get(payload["sub"])
        if user is None:
            raise AuthenticationError("Invalid token - user not found")
        if not user.is_active:
            raise AuthenticationError("Account is deactivated")
        return user

    async def update_profile(self, user: User, request: ProfileUpdateRequest) -> User:
        if request.name:
            user.name = request.name.strip()
        if request.phone:
            user.phone = request.phone
        if request.preferences:
            user.preferences = {**user.preferences, **request.preferences}
        user.updated_at = datetime.now(timezone.utc)
        return await self.users.save(user)

    async def change_password(self, user: User, request: ChangePasswordRequest) -> None:
        if not request.current_password or not request.new_password:
            raise ValidationError("Please provide current and new password")
        min_length = self.settings.auth.password_min_length
        self._check_password_length(request.new_password,
                                    f"New password must be at least {min_length} characters")
        if not verify_password(request.current_password, user.hashed_password):
            raise ValidationError("Current password is incorrect", field="current_password")

        user.hashed_password = get_password_hash(request.new_password)
        user.updated_at = datetime.now(timezone.utc)
        await self.users.save(user)
        self.audit_logger.info("Password changed", user_id=user.id)

    async def smartapi_login(self, user: User, password: str, totp: str) -> Dict[str, Any]:
        """Open a SmartAPI session with the user's trading PIN and TOTP."""
        if not password or not totp:
            raise ValidationError("Please provide password and TOTP")

        result = await self.gateway.generate_session(user.client_code, password, totp)
        if not result.success or not (result.data or {}).get("access_token"):
            self.audit_logger.warning("SmartAPI login failed", user_id=user.id, message=result.message)
            raise BrokerAPIError(result.message or "SmartAPI login failed", api_error_code=result.error_code)

        user.broker_session = self._new_session(result.data)
        user.updated_at = datetime.now(timezone.utc)
        await self.users.save(user)

        profile = await self.gateway.get_profile(user.broker_session.access_token)
        self.audit_logger.info("SmartAPI session opened", user_id=user.id,
                               expires_at=user.broker_session.expires_at.isoformat())
        return {
            "smartapi_connected": True,
            "profile": profile.data if profile.success else None,
            "feed_token": user.broker_session.feed_token,
        }

    def _new_session(self, tokens: Dict[str, Any]) -> BrokerSession:
        return BrokerSession(
            access_token=tokens.get("access_token"),
            refresh_token=tokens.get("refresh_token"),
            feed_token=tokens.get("feed_token"),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=self.settings.smartapi.session_hours),
        )

    async def refresh_smartapi(self, user: User) -> Dict[str, Any]:
        session = user.broker_session
        if not session.refresh_token:
            raise AuthenticationError("No refresh token available. Please login again.")

        result = await self.gateway.refresh_tokens(session.refresh_token, session.access_token)
        if not result.success or not (result.data or {}).get("access_token"):
            # Stale tokens are useless once refresh fails
            user.broker_session = BrokerSession()
            await self.users.save(user)
            self.audit_logger.warning("SmartAPI token refresh failed", user_id=user.id, message=result.message)
            raise AuthenticationError("Token refresh failed. Please login again.")

        user.broker_session = self._new_session(result.data)
        user.updated_at = datetime.now(timezone.utc)
        await self.users.save(user)
        return {"token_refreshed": True, "feed_token": user.broker_session.feed_token}

    async def smartapi_status(self, user: User) -> Dict[str, Any]:
        connected = user.has_valid_broker_session()
        profile = None
        if connected:
            result = await self.gateway.get_profile(user.broker_session.access_token)
            if result.success:
                profile = result.data
        return {
            "is_connected": connected,
            "token_expiry": user.broker_session.expires_at,
            "profile": profile,
        }

    async def logout(self, user: User) -> None:
        """Close the SmartAPI session (best effort) and forget its tokens."""
        if user.has_valid_broker_session():
            result = await self.gateway.logout(user.broker_session.access_token, user.client_code)
            if not result.success:
                self.error_logger.warning("SmartAPI logout failed", user_id=user.id, message=result.message)
        user.broker_session = BrokerSession()
        user.updated_at = datetime.now(timezone.utc)
        await self.users.save(user)
        self.audit_logger.info("User logged out", user_id=user.id)
