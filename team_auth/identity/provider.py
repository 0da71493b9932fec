"""
Identity provider adapter.

The core never reads credentials, password hashes or mail queues directly.
Everything it needs from the outside identity system goes through the
IdentityProvider protocol below, so a hosted provider can replace the local
database-backed one without touching the services.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol, TypeVar

from team_auth.config import settings
from team_auth.core.exceptions import DependencyException, ErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class UserRecord:
    """Profile of a user as the identity provider knows it."""

    id: str
    email: str
    full_name: str | None = None
    email_confirmed: bool = False


@dataclass(frozen=True)
class Credential:
    """
    A session credential issued by the identity provider.

    Attributes:
        access_token: Bearer token
        user_id: User the token authenticates as
        expires_at: Naive UTC expiry
        metadata: Claims carried alongside the subject (impersonation tags)
    """

    access_token: str
    user_id: str
    expires_at: datetime
    token_type: str = "bearer"
    metadata: dict[str, Any] = field(default_factory=dict)


class IdentityProviderError(DependencyException):
    """Raised when the identity provider itself fails (not when it says no)."""

    default_code = ErrorCode.IDP_UNAVAILABLE


class IdentityProvider(Protocol):
    def create_user(
        self, email: str, password: str | None = None, full_name: str | None = None
    ) -> UserRecord: ...

    def get_user_by_id(self, user_id: str) -> UserRecord | None: ...

    def get_user_by_email(self, email: str) -> UserRecord | None: ...

    def generate_one_time_link(self, email: str, metadata: dict[str, Any]) -> str: ...

    def verify_one_time_token(self, token: str) -> Credential: ...

    def issue_session_for(
        self, user: UserRecord, metadata: dict[str, Any], expires_at: datetime | None = None
    ) -> Credential: ...

    def delete_user(self, user_id: str) -> None: ...


def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    attempts: int | None = None,
    backoff: float | None = None,
    **kwargs: Any,
) -> T:
    """
    Call an identity provider operation with bounded exponential backoff.

    Only IdentityProviderError is retried. Denials and validation failures
    propagate on the first attempt.

    Args:
        fn: Provider method to call
        attempts: Maximum attempts (defaults to IDP_MAX_ATTEMPTS)
        backoff: Initial delay in seconds, doubled after each failure
            (defaults to IDP_RETRY_BACKOFF_SECONDS)

    Raises:
        IdentityProviderError: If every attempt failed
    """
    attempts = attempts or settings.IDP_MAX_ATTEMPTS
    delay = settings.IDP_RETRY_BACKOFF_SECONDS if backoff is None else backoff
    name = getattr(fn, "__name__", repr(fn))

    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except IdentityProviderError as e:
            if attempt == attempts:
                logger.error("Identity provider call %s failed after %d attempts: %s", name, attempts, e)
                raise
            logger.warning(
                "Identity provider call %s failed (attempt %d/%d), retrying in %.2fs",
                name,
                attempt,
                attempts,
                delay,
            )
            if delay > 0:
                time.sleep(delay)
            delay *= 2

    # attempts < 1
    raise IdentityProviderError(f"Identity provider call {name} was not attempted")


def normalize_email(email: str) -> str:
    """E-mails are compared case-insensitively, after trimming."""
    return email.strip().lower()
