"""Database-backed identity provider for development and tests."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from team_auth.config import settings
from team_auth.core.exceptions import ConflictException, ErrorCode
from team_auth.core.security import (
    ONE_TIME_TOKEN_TYPE,
    create_access_token,
    create_jwt,
    decode_one_time_token,
    generate_token_id,
    hash_password,
)
from team_auth.identity.provider import Credential, IdentityProviderError, UserRecord, normalize_email
from team_auth.models.base import utcnow
from team_auth.models.user import User
from team_auth.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

# Claims set by the provider itself; never copied back out as link metadata
_RESERVED_CLAIMS = {"typ", "email", "jti", "exp", "iat", "sub"}


@dataclass
class OutboxMessage:
    """A one-time link that would have been e-mailed."""

    email: str
    token: str
    metadata: dict[str, Any] = field(default_factory=dict)


def _to_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        email_confirmed=user.email_confirmed_at is not None,
    )


class LocalIdentityProvider:
    """
    Identity provider backed by the users table.

    Passwords are hashed with bcrypt, sessions and one-time links are HS256
    JWTs signed with SECRET_KEY. Instead of sending mail, issued links are
    appended to `outbox` when one is given.

    One-time links are self-contained tokens: they expire but are not
    burned on first use. Invitation tokens are single-use anyway because the
    invitation leaves PENDING when accepted.
    """

    def __init__(self, db: Session, outbox: list[OutboxMessage] | None = None):
        self.db = db
        self.user_repo = UserRepository(db)
        self.outbox = outbox

    def create_user(
        self, email: str, password: str | None = None, full_name: str | None = None
    ) -> UserRecord:
        """
        Register a new user.

        Raises:
            ConflictException: EMAIL_ALREADY_EXISTS if the e-mail is taken
            IdentityProviderError: If the user store is unreachable
        """
        email = normalize_email(email)
        password_hash = hash_password(password) if password else None
        try:
            if self.user_repo.get_by_email(email):
                raise ConflictException(f"User with email {email} already exists", ErrorCode.EMAIL_ALREADY_EXISTS)
            user = self.user_repo.create(email=email, full_name=full_name, password_hash=password_hash)
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictException(
                f"User with email {email} already exists", ErrorCode.EMAIL_ALREADY_EXISTS
            ) from e
        except OperationalError as e:
            self.db.rollback()
            raise IdentityProviderError(f"User store unavailable: {e}") from e

        logger.info("Created user %s", user.id)
        return _to_record(user)

    def get_user_by_id(self, user_id: str) -> UserRecord | None:
        try:
            user = self.user_repo.get_by_id(user_id)
        except OperationalError as e:
            raise IdentityProviderError(f"User store unavailable: {e}") from e
        return _to_record(user) if user else None

    def get_user_by_email(self, email: str) -> UserRecord | None:
        try:
            user = self.user_repo.get_by_email(normalize_email(email))
        except OperationalError as e:
            raise IdentityProviderError(f"User store unavailable: {e}") from e
        return _to_record(user) if user else None

    def generate_one_time_link(self, email: str, metadata: dict[str, Any]) -> str:
        """
        Mint a one-time sign-in token for an e-mail address and "deliver" it.

        Args:
            email: Recipient
            metadata: Extra claims (team_id, role, ...) returned on verification

        Returns:
            Raw token; callers must only persist its hash
        """
        email = normalize_email(email)
        claims = dict(metadata)
        claims.update({"typ": ONE_TIME_TOKEN_TYPE, "email": email, "jti": generate_token_id()})
        expires_at = utcnow() + timedelta(minutes=settings.ONE_TIME_TOKEN_EXPIRE_MINUTES)
        token = create_jwt(claims, expires_at)

        if self.outbox is not None:
            self.outbox.append(OutboxMessage(email=email, token=token, metadata=dict(metadata)))
        logger.info("Issued one-time link for %s", email)
        return token

    def verify_one_time_token(self, token: str) -> Credential:
        """
        Exchange a one-time token for a session.

        Unknown e-mails get an account on first use, the same way an invite
        link signs a new user up.

        Raises:
            ValidationException: INVALID_TOKEN if the token is bad or expired
        """
        payload = decode_one_time_token(token)
        email = payload["email"]

        try:
            user = self.user_repo.get_by_email(email)
            if user is None:
                user = self.user_repo.create(email=email)
                logger.info("Created user %s from one-time link", user.id)
            if user.email_confirmed_at is None:
                user.email_confirmed_at = utcnow()
                user = self.user_repo.update(user)
        except OperationalError as e:
            self.db.rollback()
            raise IdentityProviderError(f"User store unavailable: {e}") from e

        metadata = {key: value for key, value in payload.items() if key not in _RESERVED_CLAIMS}
        return self.issue_session_for(_to_record(user), metadata)

    def issue_session_for(
        self, user: UserRecord, metadata: dict[str, Any], expires_at: datetime | None = None
    ) -> Credential:
        """Issue an access token for `user`, carrying `metadata` as claims."""
        if expires_at is None:
            expires_at = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        token = create_access_token(user.id, extra_claims=metadata, expires_at=expires_at)
        return Credential(access_token=token, user_id=user.id, expires_at=expires_at, metadata=dict(metadata))

    def delete_user(self, user_id: str) -> None:
        try:
            user = self.user_repo.get_by_id(user_id)
            if user is not None:
                self.user_repo.delete(user)
                logger.info("Deleted user %s", user_id)
        except OperationalError as e:
            self.db.rollback()
            raise IdentityProviderError(f"User store unavailable: {e}") from e
