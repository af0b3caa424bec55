from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
from jose import JWTError, jwt
from core.config.settings import Settings

# --- Password Hashing ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifies a plain password against its hashed version."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hashes a plain password."""
    return pwd_context.hash(password)


# --- JSON Web Tokens (JWT) ---
# Application tokens authenticate dashboard API requests. They are unrelated
# to the SmartAPI JWTs, which are stored on the user record.

def _encode(data: dict, settings: Settings, token_type: str, minutes: int) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    to_encode.update({"exp": expire, "type": token_type})
    return jwt.encode(
        to_encode,
        settings.auth.secret_key,
        algorithm=settings.auth.algorithm
    )


def create_access_token(data: dict, settings: Settings) -> str:
    """Creates a new JWT access token."""
    return _encode(data, settings, ACCESS_TOKEN_TYPE, settings.auth.access_token_expire_minutes)


def create_refresh_token(data: dict, settings: Settings) -> str:
    return _encode(data, settings, REFRESH_TOKEN_TYPE, settings.auth.refresh_token_expire_minutes)


def decode_token(token: str, settings: Settings, expected_type: str = ACCESS_TOKEN_TYPE) -> dict | None:
    """
    Decodes and validates a JWT.

    Returns:
        The token's payload if valid and of the expected type, otherwise None.
    """
    try:
        payload = jwt.decode(
            token,
            settings.auth.secret_key,
            algorithms=[settings.auth.algorithm]
        )
    except JWTError:
        # Token is invalid (expired, wrong signature, etc.)
        return None
    if payload.get("type") != expected_type:
        return None
    return payload


def decode_access_token(token: str, settings: Settings) -> dict | None:
    return decode_token(token, settings, ACCESS_TOKEN_TYPE)
