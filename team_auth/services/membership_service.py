import logging

from sqlalchemy.orm import Session

from team_auth.core.exceptions import (
    ErrorCode,
    InvariantViolationException,
    NotFoundException,
    ValidationException,
)
from team_auth.core.policy import Operation, Target, assignable_roles, decide
from team_auth.database import atomic
from team_auth.identity.provider import IdentityProvider, call_with_retry
from team_auth.models.actor_context import ActorContext
from team_auth.models.role import TeamRole
from team_auth.models.team_membership import TeamMembership
from team_auth.repositories.team_membership_repository import TeamMembershipRepository
from team_auth.repositories.team_repository import TeamRepository
from team_auth.services.audit import log_decision

logger = logging.getLogger(__name__)


class MembershipService:
    """
    Service layer for team membership.

    Every mutation asks the policy engine first, logs the decision to the
    audit trail and only then reaches the repository, which re-checks the
    structural invariants on its own.
    """

    def __init__(self, db: Session, identity: IdentityProvider | None = None):
        self.db = db
        self.team_repo = TeamRepository(db)
        self.membership_repo = TeamMembershipRepository(db)
        self.identity = identity

    def get_role(self, team_id: str, user_id: str) -> TeamRole | None:
        """
        Role of a user for a team.

        Platform super admins hold SUPER_ADMIN for every team.
        """
        if self.membership_repo.get_super_admin_membership(user_id) is not None:
            return TeamRole.SUPER_ADMIN
        membership = self.membership_repo.get_membership(user_id, team_id)
        return membership.role if membership else None

    def build_actor_context(
        self,
        user_id: str,
        team_id: str | None = None,
        email: str | None = None,
        impersonator_id: str | None = None,
        session_id: str | None = None,
    ) -> ActorContext:
        """
        Resolve who is acting and with which role.

        Args:
            user_id: Authenticated user (the target, under impersonation)
            team_id: Team being acted on; None resolves the user's own team
            email: Authenticated e-mail
            impersonator_id: Original admin when impersonating
            session_id: Impersonation session id

        Returns:
            ActorContext; role is None when the user has no role in the team

        Raises:
            NotFoundException: TEAM_NOT_FOUND if team_id does not exist
        """
        if team_id is not None and self.team_repo.get_by_id(team_id) is None:
            raise NotFoundException(f"Team {team_id} not found", ErrorCode.TEAM_NOT_FOUND)

        role: TeamRole | None = None
        if self.membership_repo.get_super_admin_membership(user_id) is not None:
            role = TeamRole.SUPER_ADMIN
        elif team_id is None:
            memberships = self.membership_repo.get_user_memberships(user_id)
            if memberships:
                role, team_id = memberships[0].role, memberships[0].team_id
        else:
            membership = self.membership_repo.get_membership(user_id, team_id)
            role = membership.role if membership else None

        return ActorContext(
            user_id=user_id,
            role=role,
            team_id=team_id,
            email=email,
            impersonator_id=impersonator_id,
            session_id=session_id,
        )

    def get_members_with_profiles(self, context: ActorContext) -> list[dict]:
        """
        Get all members of the context team with profile details.

        Args:
            context: Actor context

        Returns:
            List of members with e-mail and name from the identity provider
        """
        decide(
            context.role,
            context.user_id,
            Target(team_id=context.team_id),
            Operation.VIEW_MEMBERS,
            actor_team_id=context.team_id,
        ).raise_for_denial()

        memberships = self.membership_repo.get_team_members(context.team_id)

        result = []
        for membership in memberships:
            profile = None
            if self.identity is not None:
                profile = call_with_retry(self.identity.get_user_by_id, membership.user_id)
            result.append(
                {
                    "user_id": membership.user_id,
                    "email": profile.email if profile else None,
                    "full_name": profile.full_name if profile else None,
                    "role": membership.role,
                    "joined_at": membership.joined_at,
                }
            )
        return result

    def get_assignable_roles(self, context: ActorContext) -> list[TeamRole]:
        return assignable_roles(context.role)

    def add_member(self, team_id: str, user_id: str, role: TeamRole) -> TeamMembership:
        """
        Add a user to a team inside the caller's unit of work.

        Authorization happens upstream: at signup (the creator becomes
        owner) or when the invitation being accepted was issued.

        Raises:
            ValidationException: ALREADY_MEMBER if the user belongs to any team
        """
        if self.membership_repo.get_user_memberships(user_id):
            raise ValidationException(f"User {user_id} is already a member of a team", ErrorCode.ALREADY_MEMBER)
        return self.membership_repo.create(team_id, user_id, role)

    def _target(self, context: ActorContext, user_id: str) -> tuple[TeamMembership | None, Target]:
        membership = self.membership_repo.get_membership(user_id, context.team_id)
        if membership is None and self.membership_repo.get_super_admin_membership(user_id) is not None:
            # Platform admins are privileged in every team, not just their own
            return None, Target(user_id=user_id, role=TeamRole.SUPER_ADMIN, team_id=context.team_id)
        return membership, Target(
            user_id=user_id,
            role=membership.role if membership else None,
            team_id=context.team_id,
        )

    def update_member_role(self, context: ActorContext, user_id: str, new_role: TeamRole) -> TeamMembership:
        """
        Change a member's role.

        Promoting to OWNER (super_admin only) is carried out as an ownership
        transfer, so the previous owner becomes an admin.

        Args:
            context: Actor context
            user_id: Member to change
            new_role: Role to assign

        Returns:
            Updated membership

        Raises:
            ForbiddenException: If the policy denies the change
            ValidationException: If the target is the owner (use transfer)
            ConflictException: If the row changed concurrently
        """
        new_role = TeamRole(new_role)
        membership, target = self._target(context, user_id)

        decision = decide(
            context.role,
            context.user_id,
            target,
            Operation.UPDATE_ROLE,
            {"role": new_role},
            context.team_id,
        )
        log_decision(
            context,
            Operation.UPDATE_ROLE.value,
            decision,
            target=user_id,
            details={"from": target.role.value if target.role else None, "to": new_role.value},
        )
        decision.raise_for_denial()

        if new_role == TeamRole.OWNER:
            return self.transfer_ownership(context, user_id)

        if membership.role == TeamRole.OWNER:
            raise ValidationException("Transfer ownership to another member before changing the owner's role")

        if membership.role == new_role:
            return membership

        with atomic(self.db):
            self.membership_repo.update_role(membership, new_role)

        logger.info(
            "User %s changed role of %s in team %s to %s",
            context.user_id,
            user_id,
            context.team_id,
            new_role.value,
        )
        return membership

    def remove_member(self, context: ActorContext, user_id: str) -> None:
        """
        Remove a member from the team.

        Raises:
            ForbiddenException: If the policy denies the removal
            ValidationException: If the target is the owner
            ConflictException: If the row changed concurrently
        """
        membership, target = self._target(context, user_id)

        decision = decide(
            context.role,
            context.user_id,
            target,
            Operation.REMOVE_MEMBER,
            actor_team_id=context.team_id,
        )
        log_decision(
            context,
            Operation.REMOVE_MEMBER.value,
            decision,
            target=user_id,
            details={"role": target.role.value if target.role else None},
        )
        decision.raise_for_denial()

        if membership.role == TeamRole.OWNER:
            raise ValidationException("Transfer ownership to another member before removing the owner")

        with atomic(self.db):
            self.membership_repo.delete(membership)

        logger.info("User %s removed %s from team %s", context.user_id, user_id, context.team_id)

    def transfer_ownership(self, context: ActorContext, new_owner_id: str) -> TeamMembership:
        """
        Make another member the owner and demote the current owner to admin.

        Both writes commit together. When the actor is the owner, the row
        demoted is the actor's own membership as read at the start of the
        request, so a transfer racing another transfer fails its version
        check instead of applying on top of it.

        Args:
            context: Actor context (owner of the team, or super_admin)
            new_owner_id: Member to promote

        Returns:
            The new owner's membership

        Raises:
            ForbiddenException: If the policy denies the transfer
            ValidationException: If the target already owns the team
            ConflictException: If another transfer won the race
        """
        new_owner, target = self._target(context, new_owner_id)

        decision = decide(
            context.role,
            context.user_id,
            target,
            Operation.TRANSFER_OWNERSHIP,
            actor_team_id=context.team_id,
        )
        log_decision(context, Operation.TRANSFER_OWNERSHIP.value, decision, target=new_owner_id)
        decision.raise_for_denial()

        if new_owner.role == TeamRole.OWNER:
            raise ValidationException(f"User {new_owner_id} already owns this team")

        if context.is_owner():
            current_owner = self.membership_repo.get_membership(context.user_id, context.team_id)
        else:
            current_owner = self.membership_repo.get_owner(context.team_id)
        if current_owner is None:
            raise InvariantViolationException(f"Team {context.team_id} has no owner")

        with atomic(self.db):
            self.membership_repo.transfer_owner(current_owner, new_owner)

        logger.info(
            "Ownership of team %s transferred from %s to %s",
            context.team_id,
            current_owner.user_id,
            new_owner_id,
        )
        return new_owner
