from dataclasses import dataclass, field
from datetime import datetime, UTC

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from team_auth.core.exceptions import ErrorCode, UnauthorizedException
from team_auth.core.security import ONE_TIME_TOKEN_TYPE, decode_jwt
from team_auth.database import get_db
from team_auth.identity.local_provider import LocalIdentityProvider
from team_auth.identity.provider import Credential, IdentityProvider, UserRecord
from team_auth.models.actor_context import ActorContext
from team_auth.services.impersonation_service import ImpersonationService
from team_auth.services.membership_service import MembershipService

# auto_error=False so a missing header gets the same 401 body as a bad token
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    """A verified bearer token and the user it belongs to."""

    user: UserRecord
    token: str
    claims: dict = field(default_factory=dict)

    @property
    def session_id(self) -> str | None:
        return self.claims.get("session_id")

    @property
    def impersonator_id(self) -> str | None:
        if self.session_id is None:
            return None
        return self.claims.get("original_admin_id")

    @property
    def credential(self) -> Credential:
        """The presented token as a Credential (the admin's original snapshot)."""
        expires_at = datetime.fromtimestamp(self.claims["exp"], UTC).replace(tzinfo=None)
        return Credential(
            access_token=self.token,
            user_id=self.user.id,
            expires_at=expires_at,
            metadata={k: v for k, v in self.claims.items() if k not in ("sub", "exp", "iat", "typ")},
        )


def get_identity_provider(db: Session = Depends(get_db)) -> IdentityProvider:
    """
    FastAPI dependency for the identity provider.

    Override in tests (app.dependency_overrides) to capture outgoing links
    or simulate provider outages.
    """
    return LocalIdentityProvider(db)


async def get_token_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> tuple[str, dict]:
    """
    Extract and validate the bearer token.

    Raises:
        UnauthorizedException: Missing, invalid or expired token, or a
            one-time link token presented as a session
    """
    if credentials is None:
        raise UnauthorizedException("Not authenticated")

    token = credentials.credentials
    claims = decode_jwt(token)
    if claims.get("typ") == ONE_TIME_TOKEN_TYPE:
        raise UnauthorizedException("One-time link tokens cannot be used as a session")
    return token, claims


async def get_current_user(
    token_claims: tuple[str, dict] = Depends(get_token_claims),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> AuthenticatedUser:
    """
    FastAPI dependency to validate JWT and load the user.

    Flow:
    1. Extract token from Authorization: Bearer <token>
    2. Validate JWT using shared SECRET_KEY
    3. Load the user named by the 'sub' claim from the identity provider
    4. For impersonation tokens, check the session is still active; a
       stopped or expired session invalidates its token immediately

    Raises:
        UnauthorizedException: UNAUTHENTICATED or SESSION_ENDED (401)
    """
    token, claims = token_claims

    user = identity.get_user_by_id(claims["sub"])
    if user is None:
        raise UnauthorizedException("User not found")

    session_id = claims.get("session_id")
    if session_id is not None:
        if not ImpersonationService(db, identity).is_session_active(session_id):
            raise UnauthorizedException("Impersonation session has ended", ErrorCode.SESSION_ENDED)

    return AuthenticatedUser(user=user, token=token, claims=claims)


def _build_context(db: Session, current: AuthenticatedUser, team_id: str | None) -> ActorContext:
    return MembershipService(db).build_actor_context(
        current.user.id,
        team_id=team_id,
        email=current.user.email,
        impersonator_id=current.impersonator_id,
        session_id=current.session_id,
    )


async def get_actor_context(
    team_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActorContext:
    """
    Actor context for routes under /api/teams/{team_id}.

    The role is the caller's role in that team (None for outsiders, who are
    then denied by the policy engine with NOT_TEAM_MEMBER).

    Raises:
        NotFoundException: TEAM_NOT_FOUND (404)
    """
    return _build_context(db, current, team_id)


async def get_platform_actor(
    current: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActorContext:
    """Actor context without a team in the path: the caller's own team, if any."""
    return _build_context(db, current, None)


async def get_stopping_actor(
    token_claims: tuple[str, dict] = Depends(get_token_claims),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> ActorContext:
    """
    Actor context for ending impersonation.

    Same signature and expiry checks as get_current_user, but the token's
    impersonation session may already be closed: repeating a stop with the
    impersonated token must stay a no-op rather than a 401.

    Raises:
        UnauthorizedException: Invalid token or unknown user
    """
    token, claims = token_claims

    user = identity.get_user_by_id(claims["sub"])
    if user is None:
        raise UnauthorizedException("User not found")

    return _build_context(db, AuthenticatedUser(user=user, token=token, claims=claims), None)
