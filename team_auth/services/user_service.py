import logging
from datetime import datetime

from sqlalchemy.orm import Session

from team_auth.core.exceptions import ValidationException
from team_auth.core.policy import Operation, Target, decide
from team_auth.database import atomic
from team_auth.identity.provider import IdentityProvider, call_with_retry
from team_auth.models.actor_context import ActorContext
from team_auth.models.base import utcnow
from team_auth.models.impersonation_session import SessionEndReason
from team_auth.models.role import TeamRole
from team_auth.models.team_membership import TeamMembership
from team_auth.repositories.impersonation_session_repository import ImpersonationSessionRepository
from team_auth.repositories.team_membership_repository import TeamMembershipRepository
from team_auth.repositories.team_repository import TeamRepository
from team_auth.services.audit import log_decision

logger = logging.getLogger(__name__)


class UserService:
    """Service layer for user accounts"""

    def __init__(self, db: Session, identity: IdentityProvider):
        self.db = db
        self.identity = identity
        self.team_repo = TeamRepository(db)
        self.membership_repo = TeamMembershipRepository(db)
        self.session_repo = ImpersonationSessionRepository(db)

    def _target(self, user_id: str) -> tuple[TeamMembership | None, Target]:
        if self.membership_repo.get_super_admin_membership(user_id) is not None:
            return None, Target(user_id=user_id, role=TeamRole.SUPER_ADMIN)
        memberships = self.membership_repo.get_user_memberships(user_id)
        if not memberships:
            return None, Target(user_id=user_id)
        membership = memberships[0]
        return membership, Target(user_id=user_id, role=membership.role, team_id=membership.team_id)

    def delete_user(self, context: ActorContext, user_id: str, now: datetime | None = None) -> None:
        """
        Delete a user's account together with their membership.

        Owners and admins may delete users of their own team; only a
        super_admin may delete a team owner. An owner whose team still has
        other members must hand ownership over first; an owner who is the
        only member takes the team with them.

        The account is deleted in the identity provider inside the same unit
        of work as the membership changes, after them; if the provider
        fails, nothing is committed and the request can be repeated.

        Args:
            context: Platform actor context of the caller
            user_id: User to delete
            now: Reference time (naive UTC) for closing impersonation sessions

        Raises:
            ForbiddenException: If the policy denies the deletion
            ValidationException: If the target owns a team with other members
            DependencyException: If the identity provider is unavailable
        """
        membership, target = self._target(user_id)

        decision = decide(
            context.role,
            context.user_id,
            target,
            Operation.DELETE_USER,
            actor_team_id=context.team_id,
        )
        log_decision(
            context,
            Operation.DELETE_USER.value,
            decision,
            target=user_id,
            details={"role": target.role.value if target.role else None},
        )
        decision.raise_for_denial()

        team = None
        if membership.role == TeamRole.OWNER:
            others = [m for m in self.membership_repo.get_team_members(membership.team_id) if m.user_id != user_id]
            if others:
                raise ValidationException("Transfer ownership to another member before deleting the owner")
            team = self.team_repo.get_by_id(membership.team_id)

        with atomic(self.db):
            self.session_repo.end_sessions(now or utcnow(), SessionEndReason.USER_DELETED, participant_id=user_id)
            if team is not None:
                self.team_repo.delete(team)
            else:
                self.membership_repo.delete(membership)
            # Last, so a provider failure rolls the membership changes back
            call_with_retry(self.identity.delete_user, user_id)

        logger.info("User %s deleted user %s", context.user_id, user_id)
