import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from team_auth.config import settings
from team_auth.core.exceptions import ErrorCode, NotFoundException, ValidationException
from team_auth.core.policy import Operation, Target, decide
from team_auth.core.security import hash_token
from team_auth.database import atomic
from team_auth.identity.provider import IdentityProvider, UserRecord, call_with_retry, normalize_email
from team_auth.models.actor_context import ActorContext
from team_auth.models.base import utcnow
from team_auth.models.invitation import Invitation, InvitationStatus
from team_auth.models.role import TeamRole
from team_auth.models.team_membership import TeamMembership
from team_auth.repositories.invitation_repository import InvitationRepository
from team_auth.repositories.team_membership_repository import TeamMembershipRepository
from team_auth.repositories.team_repository import TeamRepository
from team_auth.services.audit import ALLOWED, DENIED, AuditEvent, log_decision, log_event
from team_auth.services.membership_service import MembershipService

logger = logging.getLogger(__name__)

REVOKED = "revoked"
NOT_PENDING = "not_pending"


class InvitationService:
    """
    Service layer for the invitation workflow.

    pending -> accepted | revoked. A pending invitation past expires_at is
    marked revoked the first time it is touched.
    """

    def __init__(self, db: Session, identity: IdentityProvider):
        self.db = db
        self.identity = identity
        self.team_repo = TeamRepository(db)
        self.membership_repo = TeamMembershipRepository(db)
        self.invitation_repo = InvitationRepository(db)
        self.membership_service = MembershipService(db, identity)

    def _expire(self, invitation: Invitation) -> None:
        with atomic(self.db):
            self.invitation_repo.set_status(invitation, InvitationStatus.REVOKED)
        logger.info("Invitation %s expired", invitation.id)

    def create_invite(
        self,
        context: ActorContext,
        email: str,
        role: TeamRole = TeamRole.MEMBER,
        now: datetime | None = None,
    ) -> Invitation:
        """
        Invite an e-mail address to the context team.

        The one-time link goes out through the identity provider; only the
        hash of its token is stored.

        Args:
            context: Actor context
            email: Invitee address
            role: Role granted on acceptance
            now: Reference time (naive UTC)

        Returns:
            The pending invitation

        Raises:
            ForbiddenException: If the actor may not invite at this role
            ValidationException: ALREADY_MEMBER / INVITE_ALREADY_PENDING
            DependencyException: If the link could not be issued
        """
        now = now or utcnow()
        email = normalize_email(email)
        role = TeamRole(role)

        team = self.team_repo.get_by_id(context.team_id)
        if team is None:
            raise NotFoundException(f"Team {context.team_id} not found", ErrorCode.TEAM_NOT_FOUND)

        decision = decide(
            context.role,
            context.user_id,
            Target(team_id=team.id),
            Operation.INVITE_MEMBER,
            {"role": role},
            context.team_id,
        )
        log_decision(context, Operation.INVITE_MEMBER.value, decision, target=email, details={"role": role.value})
        decision.raise_for_denial()

        existing_user = call_with_retry(self.identity.get_user_by_email, email)
        if existing_user is not None and self.membership_repo.get_user_memberships(existing_user.id):
            raise ValidationException(f"{email} is already a member of a team", ErrorCode.ALREADY_MEMBER)

        pending = self.invitation_repo.get_pending(team.id, email)
        if pending is not None:
            if not pending.is_expired(now):
                raise ValidationException(
                    f"An invitation for {email} is already pending", ErrorCode.INVITE_ALREADY_PENDING
                )
            self._expire(pending)

        token = call_with_retry(
            self.identity.generate_one_time_link,
            email,
            {
                "team_id": team.id,
                "team_name": team.name,
                "role": role.value,
                "invited_by": context.user_id,
            },
        )

        invitation = Invitation(
            team_id=team.id,
            email=email,
            invited_by=context.user_id,
            role=role,
            token_hash=hash_token(token),
            status=InvitationStatus.PENDING,
            expires_at=now + timedelta(hours=settings.INVITE_EXPIRE_HOURS),
        )
        with atomic(self.db):
            self.invitation_repo.create(invitation)

        logger.info("User %s invited %s to team %s as %s", context.user_id, email, team.id, role.value)
        return invitation

    def accept_invite(self, token: str, acting_user: UserRecord, now: datetime | None = None) -> TeamMembership:
        """
        Accept an invitation as the signed-in user.

        The membership row and the ACCEPTED status are committed together.
        An OWNER invitation demotes the current owner to admin in the same
        transaction.

        Args:
            token: Raw invitation token from the one-time link
            acting_user: Signed-in user accepting it
            now: Reference time (naive UTC)

        Returns:
            The new membership

        Raises:
            NotFoundException: INVITE_NOT_FOUND for an unknown token
            ValidationException: INVITE_NOT_PENDING, INVITE_EXPIRED,
                EMAIL_MISMATCH or ALREADY_MEMBER
            ConflictException: If a concurrent write got there first
        """
        now = now or utcnow()

        invitation = self.invitation_repo.get_by_token_hash(hash_token(token))
        if invitation is None:
            raise NotFoundException("Invitation not found", ErrorCode.INVITE_NOT_FOUND)

        # Past expires_at reads as expired on every attempt, even once marked revoked
        if invitation.status != InvitationStatus.ACCEPTED and invitation.is_expired(now):
            if invitation.status == InvitationStatus.PENDING:
                self._expire(invitation)
            self._log_acceptance(invitation, acting_user, DENIED, ErrorCode.INVITE_EXPIRED, now)
            raise ValidationException("Invitation has expired", ErrorCode.INVITE_EXPIRED)

        if invitation.status != InvitationStatus.PENDING:
            raise ValidationException(
                f"Invitation is already {invitation.status.value}", ErrorCode.INVITE_NOT_PENDING
            )

        if normalize_email(acting_user.email) != invitation.email:
            self._log_acceptance(invitation, acting_user, DENIED, ErrorCode.EMAIL_MISMATCH, now)
            raise ValidationException(
                "This invitation was sent to a different e-mail address", ErrorCode.EMAIL_MISMATCH
            )

        if self.membership_repo.get_user_memberships(acting_user.id):
            self._log_acceptance(invitation, acting_user, DENIED, ErrorCode.ALREADY_MEMBER, now)
            raise ValidationException("You are already a member of a team", ErrorCode.ALREADY_MEMBER)

        with atomic(self.db):
            if invitation.role == TeamRole.OWNER:
                current_owner = self.membership_repo.get_owner(invitation.team_id)
                membership = self.membership_service.add_member(
                    invitation.team_id,
                    acting_user.id,
                    TeamRole.ADMIN if current_owner else TeamRole.OWNER,
                )
                if current_owner is not None:
                    self.membership_repo.transfer_owner(current_owner, membership)
            else:
                membership = self.membership_service.add_member(invitation.team_id, acting_user.id, invitation.role)
            self.invitation_repo.set_status(invitation, InvitationStatus.ACCEPTED)

        self._log_acceptance(invitation, acting_user, ALLOWED, None, now)
        logger.info("User %s joined team %s as %s", acting_user.id, invitation.team_id, invitation.role.value)
        return membership

    def _log_acceptance(
        self,
        invitation: Invitation,
        acting_user: UserRecord,
        result: str,
        reason: ErrorCode | None,
        now: datetime,
    ) -> None:
        details = {"team_id": invitation.team_id, "invite_id": invitation.id, "role": invitation.role.value}
        if reason is not None:
            details["reason"] = reason.value
        log_event(
            AuditEvent(
                actor=acting_user.id,
                target=invitation.email,
                operation="accept_invite",
                result=result,
                timestamp=now,
                details=details,
            )
        )

    def revoke_invite(self, context: ActorContext, invite_id: str) -> str:
        """
        Revoke a pending invitation.

        Idempotent: an invitation that is unknown, belongs to another team,
        or is no longer pending yields NOT_PENDING without saying which.

        Returns:
            REVOKED or NOT_PENDING

        Raises:
            ForbiddenException: If the actor could not remove a member at the
                invited role
        """
        invitation = self.invitation_repo.get_by_id(invite_id)
        if invitation is not None and invitation.team_id != context.team_id:
            invitation = None

        invited_role = invitation.role if invitation is not None else TeamRole.MEMBER
        decision = decide(
            context.role,
            context.user_id,
            Target(team_id=context.team_id),
            Operation.REVOKE_INVITE,
            {"role": invited_role},
            context.team_id,
        )
        log_decision(context, Operation.REVOKE_INVITE.value, decision, target=invite_id)
        decision.raise_for_denial()

        if invitation is None or invitation.status != InvitationStatus.PENDING:
            return NOT_PENDING

        with atomic(self.db):
            self.invitation_repo.set_status(invitation, InvitationStatus.REVOKED)

        logger.info("User %s revoked invitation %s", context.user_id, invite_id)
        return REVOKED

    def list_pending_invites(self, context: ActorContext, now: datetime | None = None) -> list[Invitation]:
        """
        Get the team's pending invitations that have not expired.

        Raises:
            ForbiddenException: If the actor may not view invitations
        """
        decide(
            context.role,
            context.user_id,
            Target(team_id=context.team_id),
            Operation.VIEW_INVITES,
            actor_team_id=context.team_id,
        ).raise_for_denial()

        return self.invitation_repo.get_live_pending_for_team(context.team_id, now or utcnow())
