"""
Impersonation session manager.

A super_admin can act as another user for a fixed, short window. The
session row is the durable audit record: it is committed before any
credential exists, its expiry is fixed at creation, and it is closed exactly
once. Every read treats a row past its expiry as ended, whether or not the
sweep has stamped ended_at yet.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from team_auth.config import settings
from team_auth.core.exceptions import (
    DependencyException,
    ErrorCode,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from team_auth.core.policy import Operation, Target, decide, deny
from team_auth.database import atomic
from team_auth.identity.provider import (
    Credential,
    IdentityProvider,
    IdentityProviderError,
    call_with_retry,
)
from team_auth.models.actor_context import ActorContext
from team_auth.models.base import utcnow
from team_auth.models.impersonation_session import ImpersonationSession, SessionEndReason
from team_auth.models.role import TeamRole
from team_auth.repositories.impersonation_session_repository import ImpersonationSessionRepository
from team_auth.repositories.team_membership_repository import TeamMembershipRepository
from team_auth.services.audit import ALLOWED, log_decision, log_security_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImpersonationStart:
    """Result of a successful start: both credentials travel back together."""

    session: ImpersonationSession
    impersonated: Credential
    original: Credential | None


@dataclass(frozen=True)
class ImpersonationStop:
    already_ended: bool
    ended_count: int


class ImpersonationService:
    def __init__(self, db: Session, identity: IdentityProvider):
        self.db = db
        self.identity = identity
        self.session_repo = ImpersonationSessionRepository(db)
        self.membership_repo = TeamMembershipRepository(db)

    def start_impersonation(
        self,
        context: ActorContext,
        target_user_id: str,
        reason: str,
        original_credential: Credential | None = None,
        now: datetime | None = None,
    ) -> ImpersonationStart:
        """
        Start impersonating a user.

        Order of checks:
        1. actor is not super_admin -> IMPERSONATION_UNAUTHORIZED
        2. target is the actor -> SELF_IMPERSONATION
        3. target unknown -> USER_NOT_FOUND
        4. target is super_admin -> TARGET_IS_PRIVILEGED
        5. reason too short after trimming -> REASON_REQUIRED

        The session row is committed before the credential is requested. If
        the identity provider still fails after retries, the row is closed
        with end_reason ISSUANCE_FAILED and DependencyException is raised.

        Args:
            context: Platform actor context of the admin
            target_user_id: User to impersonate
            reason: Free-text justification, kept in the audit record
            original_credential: Admin's own credential, handed back so the
                caller can restore it when the session ends
            now: Reference time (naive UTC)

        Returns:
            ImpersonationStart with the session and both credentials
        """
        now = now or utcnow()

        decision = decide(context.role, context.user_id, Target(user_id=target_user_id), Operation.IMPERSONATE)
        if decision.allowed:
            target = call_with_retry(self.identity.get_user_by_id, target_user_id)
            if target is None:
                raise NotFoundException(f"User {target_user_id} not found", ErrorCode.USER_NOT_FOUND)

            target_role = None
            if self.membership_repo.get_super_admin_membership(target_user_id) is not None:
                target_role = TeamRole.SUPER_ADMIN
            decision = decide(
                context.role,
                context.user_id,
                Target(user_id=target_user_id, role=target_role),
                Operation.IMPERSONATE,
            )
        if not decision.allowed:
            log_decision(context, Operation.IMPERSONATE.value, decision, target=target_user_id)
            decision.raise_for_denial()

        reason = (reason or "").strip()
        if len(reason) < settings.IMPERSONATION_MIN_REASON_LENGTH:
            log_decision(
                context,
                Operation.IMPERSONATE.value,
                deny(ErrorCode.REASON_REQUIRED, "Impersonation reason too short"),
                target=target_user_id,
            )
            raise ValidationException(
                f"A reason of at least {settings.IMPERSONATION_MIN_REASON_LENGTH} characters is required",
                ErrorCode.REASON_REQUIRED,
            )
        log_decision(context, Operation.IMPERSONATE.value, decision, target=target_user_id)

        session = ImpersonationSession(
            admin_user_id=context.user_id,
            target_user_id=target_user_id,
            reason=reason,
            started_at=now,
            expires_at=now + timedelta(minutes=settings.IMPERSONATION_TTL_MINUTES),
        )
        with atomic(self.db):
            if settings.IMPERSONATION_SINGLE_ACTIVE_SESSION:
                # Lapsed sessions close as EXPIRED at their own expiry, not as superseded now
                self.session_repo.end_expired(now)
                superseded = self.session_repo.end_sessions(
                    now, SessionEndReason.SUPERSEDED, admin_user_id=context.user_id
                )
                if superseded:
                    logger.info("Superseded %d open session(s) of admin %s", superseded, context.user_id)
            self.session_repo.create(session)

        session_id = session.id
        metadata = {
            "acting_as": True,
            "original_admin_id": context.user_id,
            "session_id": session_id,
        }
        try:
            credential = call_with_retry(
                self.identity.issue_session_for,
                target,
                metadata,
                expires_at=session.expires_at,
            )
        except IdentityProviderError as e:
            with atomic(self.db):
                self.session_repo.end_sessions(now, SessionEndReason.ISSUANCE_FAILED, session_id=session_id)
            logger.error("Could not issue impersonation credential for session %s: %s", session_id, e)
            raise DependencyException(
                "Identity provider unavailable, impersonation was not started", ErrorCode.IDP_UNAVAILABLE
            ) from e

        log_security_event(
            context,
            "impersonation_start",
            ALLOWED,
            target=target_user_id,
            details={"session_id": session_id, "reason": reason},
            now=now,
        )
        logger.info("Admin %s started impersonating %s (session %s)", context.user_id, target_user_id, session_id)
        return ImpersonationStart(session=session, impersonated=credential, original=original_credential)

    def stop_impersonation(
        self,
        context: ActorContext,
        session_id: str | None = None,
        now: datetime | None = None,
    ) -> ImpersonationStop:
        """
        End impersonation. Safe to call any number of times.

        With a session_id, that session is closed. Without one, every open
        session where the caller (or, under impersonation, the original
        admin) is the admin or the target is closed. Sessions already past
        their expiry are closed as EXPIRED, not STOPPED.

        Returns:
            ImpersonationStop; already_ended is True when nothing was open

        Raises:
            NotFoundException: SESSION_NOT_FOUND if session_id is unknown or
                the caller took no part in it
        """
        now = now or utcnow()
        participants = {context.user_id}
        if context.impersonator_id is not None:
            participants.add(context.impersonator_id)

        if session_id is not None:
            session = self.session_repo.get_by_id(session_id)
            if session is None or not participants & {session.admin_user_id, session.target_user_id}:
                raise NotFoundException(f"Session {session_id} not found", ErrorCode.SESSION_NOT_FOUND)

        with atomic(self.db):
            self.session_repo.end_expired(now)
            if session_id is not None:
                ended = self.session_repo.end_sessions(now, SessionEndReason.STOPPED, session_id=session_id)
            else:
                ended = sum(
                    self.session_repo.end_sessions(now, SessionEndReason.STOPPED, participant_id=user_id)
                    for user_id in sorted(participants)
                )

        log_security_event(
            context,
            "impersonation_stop",
            ALLOWED,
            target=session_id,
            details={"ended_count": ended},
            now=now,
        )
        return ImpersonationStop(already_ended=ended == 0, ended_count=ended)

    def is_session_active(self, session_id: str, now: datetime | None = None) -> bool:
        """True while the session is open and not past expires_at."""
        session = self.session_repo.get_by_id(session_id)
        return session is not None and session.is_active(now or utcnow())

    def sweep_expired_sessions(self, now: datetime | None = None) -> int:
        """
        Stamp ended_at = expires_at on every expired open session.

        Returns:
            Number of sessions closed
        """
        with atomic(self.db):
            swept = self.session_repo.end_expired(now or utcnow())
        if swept:
            logger.info("Swept %d expired impersonation session(s)", swept)
        return swept

    def list_sessions(self, context: ActorContext) -> list[ImpersonationSession]:
        """A super_admin's own impersonation history, newest first."""
        if not context.is_super_admin() or context.is_impersonated:
            raise ForbiddenException(
                "Only super admins can view impersonation sessions", ErrorCode.IMPERSONATION_UNAUTHORIZED
            )
        return self.session_repo.list_for_admin(context.user_id)
