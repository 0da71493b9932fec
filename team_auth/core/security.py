import hashlib
import secrets
from datetime import datetime, timedelta, UTC

import bcrypt
from jose import JWTError, jwt

from team_auth.config import settings
from team_auth.core.exceptions import UnauthorizedException, ValidationException, ErrorCode

ALGORITHM = "HS256"

ACCESS_TOKEN_TYPE = "access"
ONE_TIME_TOKEN_TYPE = "one_time"


def create_jwt(claims: dict, expires_at: datetime) -> str:
    """
    Sign a JWT with the shared SECRET_KEY.

    Args:
        claims: Token claims ('sub' plus any metadata)
        expires_at: Expiry as naive UTC or aware datetime

    Returns:
        Encoded JWT string
    """
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    payload = dict(claims)
    payload["exp"] = expires_at
    payload["iat"] = datetime.now(UTC)
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def create_access_token(user_id: str, extra_claims: dict | None = None, expires_at: datetime | None = None) -> str:
    """Issue a session access token for a user."""
    if expires_at is None:
        expires_at = datetime.now(UTC) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {"sub": user_id, "typ": ACCESS_TOKEN_TYPE}
    if extra_claims:
        claims.update(extra_claims)
    return create_jwt(claims, expires_at)


def decode_jwt(token: str) -> dict:
    """
    Decode and validate JWT token using shared SECRET_KEY.

    Args:
        token: JWT access token from Authorization header

    Returns:
        Decoded token payload with 'sub' (user_id), 'exp', etc.

    Raises:
        UnauthorizedException: If token invalid, expired, or malformed
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])

        # Validate expiration (jose checks this automatically)
        exp = payload.get("exp")
        if exp is None:
            raise UnauthorizedException("Token missing expiration")

        # Extract user_id from 'sub' claim
        user_id: str = payload.get("sub")
        if user_id is None:
            raise UnauthorizedException("Token missing user identifier")

        return payload

    except JWTError as e:
        raise UnauthorizedException(f"Invalid token: {str(e)}")


def decode_one_time_token(token: str) -> dict:
    """
    Decode a one-time link token.

    Raises:
        ValidationException: INVALID_TOKEN if the token is malformed, expired
            or is not a one-time token
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise ValidationException(f"Invalid one-time token: {str(e)}", ErrorCode.INVALID_TOKEN)

    if payload.get("typ") != ONE_TIME_TOKEN_TYPE or not payload.get("email"):
        raise ValidationException("Invalid one-time token", ErrorCode.INVALID_TOKEN)
    return payload


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a raw token; only the digest is ever persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token_id() -> str:
    return secrets.token_urlsafe(16)


def password_policy_errors(password: str) -> list[str]:
    """
    Check a password against the configured policy.

    Returns:
        One message per rule the password breaks, empty if it passes
    """
    errors = []
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters")
    if settings.PASSWORD_REQUIRE_UPPERCASE and not any(c.isupper() for c in password):
        errors.append("Password must contain at least one uppercase letter")
    if settings.PASSWORD_REQUIRE_LOWERCASE and not any(c.islower() for c in password):
        errors.append("Password must contain at least one lowercase letter")
    if settings.PASSWORD_REQUIRE_NUMBERS and not any(c.isdigit() for c in password):
        errors.append("Password must contain at least one number")
    if settings.PASSWORD_REQUIRE_SPECIAL_CHARS and not any(c in settings.PASSWORD_SPECIAL_CHARS for c in password):
        errors.append("Password must contain at least one special character")
    return errors


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
