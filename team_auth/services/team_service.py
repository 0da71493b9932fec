import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from team_auth.core.exceptions import (
    ConflictException,
    ErrorCode,
    NotFoundException,
    ValidationException,
)
from team_auth.core.policy import Operation, Target, decide
from team_auth.database import atomic
from team_auth.identity.provider import Credential, IdentityProvider, UserRecord, call_with_retry, normalize_email
from team_auth.models.actor_context import ActorContext
from team_auth.models.base import utcnow
from team_auth.models.impersonation_session import SessionEndReason
from team_auth.models.role import TeamRole
from team_auth.models.team import Team
from team_auth.repositories.impersonation_session_repository import ImpersonationSessionRepository
from team_auth.repositories.team_membership_repository import TeamMembershipRepository
from team_auth.repositories.team_repository import TeamRepository
from team_auth.services.audit import log_decision
from team_auth.services.membership_service import MembershipService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignupResult:
    team: Team
    user: UserRecord
    credential: Credential


class TeamService:
    """Service layer for team management business logic"""

    def __init__(self, db: Session, identity: IdentityProvider):
        self.db = db
        self.identity = identity
        self.team_repo = TeamRepository(db)
        self.membership_repo = TeamMembershipRepository(db)
        self.session_repo = ImpersonationSessionRepository(db)
        self.membership_service = MembershipService(db, identity)

    @staticmethod
    def _clean_name(name: str | None) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationException("Team name is required")
        return name

    def create_team_with_owner(
        self,
        email: str,
        team_name: str,
        password: str | None = None,
        full_name: str | None = None,
    ) -> SignupResult:
        """
        Sign a new user up together with their team.

        The user is created in the identity provider first. If the team or
        the owner membership cannot be written, that user is deleted again
        so a failed signup can be retried with the same e-mail.

        Args:
            email: Owner's e-mail
            team_name: Unique team name
            password: Optional password (link-only accounts otherwise)
            full_name: Owner's display name

        Returns:
            SignupResult with the team, the owner and a session credential

        Raises:
            ValidationException: If the team name is empty
            ConflictException: TEAM_EXISTS or EMAIL_ALREADY_EXISTS
        """
        name = self._clean_name(team_name)
        email = normalize_email(email)

        if self.team_repo.get_by_name(name) is not None:
            raise ConflictException(f"Team '{name}' already exists", ErrorCode.TEAM_EXISTS)
        if call_with_retry(self.identity.get_user_by_email, email) is not None:
            raise ConflictException(f"User with email {email} already exists", ErrorCode.EMAIL_ALREADY_EXISTS)

        user = call_with_retry(self.identity.create_user, email, password=password, full_name=full_name)

        try:
            with atomic(self.db):
                team = self.team_repo.create(Team(name=name))
                self.membership_service.add_member(team.id, user.id, TeamRole.OWNER)
        except ConflictException as e:
            logger.warning("Team creation for %s lost a race, deleting user %s", email, user.id)
            call_with_retry(self.identity.delete_user, user.id)
            raise ConflictException(f"Team '{name}' already exists", ErrorCode.TEAM_EXISTS) from e
        except Exception:
            logger.exception("Team creation failed, deleting user %s", user.id)
            call_with_retry(self.identity.delete_user, user.id)
            raise

        credential = call_with_retry(self.identity.issue_session_for, user, {})
        logger.info("Created team %s with owner %s", team.id, user.id)
        return SignupResult(team=team, user=user, credential=credential)

    def _get_team(self, team_id: str) -> Team:
        team = self.team_repo.get_by_id(team_id)
        if team is None:
            raise NotFoundException(f"Team {team_id} not found", ErrorCode.TEAM_NOT_FOUND)
        return team

    def get_team(self, context: ActorContext) -> Team:
        """
        Get the context team. Any member may read it.

        Raises:
            ForbiddenException: NOT_TEAM_MEMBER for outsiders
        """
        team = self._get_team(context.team_id)
        decide(
            context.role,
            context.user_id,
            Target(team_id=team.id),
            Operation.VIEW_MEMBERS,
            actor_team_id=context.team_id,
        ).raise_for_denial()
        return team

    def update_team(self, context: ActorContext, changes: dict) -> Team:
        """
        Update team details (owner, admin or super_admin).

        Args:
            context: Actor context
            changes: Subset of name, address, vat_number; None values on
                address/vat_number clear them

        Returns:
            Updated team

        Raises:
            ForbiddenException: If the actor may not update the team
            ValidationException: If the new name is empty
            ConflictException: TEAM_EXISTS if the new name is taken
        """
        team = self._get_team(context.team_id)
        decision = decide(
            context.role,
            context.user_id,
            Target(team_id=team.id),
            Operation.UPDATE_TEAM,
            actor_team_id=context.team_id,
        )
        log_decision(context, Operation.UPDATE_TEAM.value, decision, target=team.id)
        decision.raise_for_denial()

        if "name" in changes:
            name = self._clean_name(changes["name"])
            existing = self.team_repo.get_by_name(name)
            if existing is not None and existing.id != team.id:
                raise ConflictException(f"Team '{name}' already exists", ErrorCode.TEAM_EXISTS)
            team.name = name

        for field in ("address", "vat_number"):
            if field in changes:
                setattr(team, field, changes[field])

        with atomic(self.db):
            self.team_repo.update(team)
        return team

    def delete_team(self, context: ActorContext, confirm_deletion: bool = False, now: datetime | None = None) -> None:
        """
        Delete the team with all its memberships and invitations.

        Open impersonation sessions targeting any member are closed with
        end_reason TEAM_DELETED in the same transaction.

        Raises:
            ForbiddenException: If the actor is not the owner or a super_admin
            ValidationException: CONFIRMATION_REQUIRED without confirm_deletion
        """
        team = self._get_team(context.team_id)
        decision = decide(
            context.role,
            context.user_id,
            Target(team_id=team.id),
            Operation.DELETE_TEAM,
            actor_team_id=context.team_id,
        )
        log_decision(context, Operation.DELETE_TEAM.value, decision, target=team.id)
        decision.raise_for_denial()

        if not confirm_deletion:
            raise ValidationException(
                "Team deletion must be explicitly confirmed", ErrorCode.CONFIRMATION_REQUIRED
            )

        member_ids = [m.user_id for m in self.membership_repo.get_team_members(team.id)]
        team_id = team.id
        with atomic(self.db):
            if member_ids:
                self.session_repo.end_sessions(
                    now or utcnow(), SessionEndReason.TEAM_DELETED, target_user_ids=member_ids
                )
            self.team_repo.delete(team)

        logger.info("User %s deleted team %s", context.user_id, team_id)
