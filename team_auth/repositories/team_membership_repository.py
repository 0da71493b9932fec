"""Repository for TeamMembership model operations."""

from sqlalchemy.orm import Session

from team_auth.core.exceptions import InvariantViolationException
from team_auth.models.role import TeamRole
from team_auth.models.team_membership import TeamMembership


class TeamMembershipRepository:
    """
    Repository for TeamMembership model operations.

    Writes only flush; the calling service owns the transaction (see
    team_auth.database.atomic). Every write re-checks the structural
    invariants and raises InvariantViolationException on its own, whatever
    the policy layer decided:

    - at most one OWNER per team, and never zero once a team has one
    - SUPER_ADMIN rows are never created, changed or deleted here
    - a user belongs to at most one team
    """

    def __init__(self, db: Session):
        self.db = db

    def get_membership(self, user_id: str, team_id: str) -> TeamMembership | None:
        """
        Get membership for a specific user in a specific team.

        Uses the identity map, so a row read earlier in this session comes
        back as read (and a write based on it is version-checked).
        """
        return self.db.get(TeamMembership, (team_id, user_id))

    def get_team_members(self, team_id: str) -> list[TeamMembership]:
        """
        Get all memberships for a team.

        Args:
            team_id: Team ID

        Returns:
            List of TeamMembership objects, oldest first
        """
        return (
            self.db.query(TeamMembership)
            .filter(TeamMembership.team_id == team_id)
            .order_by(TeamMembership.joined_at)
            .all()
        )

    def get_user_memberships(self, user_id: str) -> list[TeamMembership]:
        """
        Get all memberships for a user.

        Args:
            user_id: User ID

        Returns:
            List of TeamMembership objects for the user
        """
        return self.db.query(TeamMembership).filter(TeamMembership.user_id == user_id).all()

    def get_owner(self, team_id: str) -> TeamMembership | None:
        """
        Get the owner membership for a team.

        Args:
            team_id: Team ID

        Returns:
            TeamMembership with OWNER role or None
        """
        return (
            self.db.query(TeamMembership)
            .filter(
                TeamMembership.team_id == team_id,
                TeamMembership.role == TeamRole.OWNER,
            )
            .first()
        )

    def get_super_admin_membership(self, user_id: str) -> TeamMembership | None:
        """Return the user's SUPER_ADMIN row, if they are a platform admin."""
        return (
            self.db.query(TeamMembership)
            .filter(
                TeamMembership.user_id == user_id,
                TeamMembership.role == TeamRole.SUPER_ADMIN,
            )
            .first()
        )

    def create(self, team_id: str, user_id: str, role: TeamRole) -> TeamMembership:
        """
        Add a user to a team.

        Raises:
            InvariantViolationException: SUPER_ADMIN role, a second owner,
                an existing row for the user
            IntegrityError: On flush, if a concurrent writer got there first
        """
        if role == TeamRole.SUPER_ADMIN:
            raise InvariantViolationException("super_admin memberships cannot be created here")
        if role == TeamRole.OWNER and self.get_owner(team_id) is not None:
            raise InvariantViolationException(f"Team {team_id} already has an owner")
        if self.get_user_memberships(user_id):
            raise InvariantViolationException(f"User {user_id} already belongs to a team")

        membership = TeamMembership(team_id=team_id, user_id=user_id, role=role)
        self.db.add(membership)
        self.db.flush()
        return membership

    def create_super_admin(self, team_id: str, user_id: str) -> TeamMembership:
        """
        Grant platform super_admin to a user with no other membership.

        Only for operator tooling (scripts/grant_super_admin.py); no request
        path reaches this.
        """
        if self.get_user_memberships(user_id):
            raise InvariantViolationException(f"User {user_id} already belongs to a team")
        membership = TeamMembership(team_id=team_id, user_id=user_id, role=TeamRole.SUPER_ADMIN)
        self.db.add(membership)
        self.db.flush()
        return membership

    def update_role(self, membership: TeamMembership, new_role: TeamRole) -> TeamMembership:
        """
        Change a member's role between ADMIN and MEMBER.

        Ownership only moves through transfer_owner.

        Raises:
            InvariantViolationException: If the row or the new role is OWNER
                or SUPER_ADMIN
            StaleDataError: On flush, if the row changed since it was read
        """
        if membership.role == TeamRole.SUPER_ADMIN or new_role == TeamRole.SUPER_ADMIN:
            raise InvariantViolationException("super_admin memberships cannot be changed here")
        if membership.role == TeamRole.OWNER:
            raise InvariantViolationException("Changing the owner's role would leave the team without an owner")
        if new_role == TeamRole.OWNER:
            raise InvariantViolationException("A team cannot have a second owner")

        membership.role = new_role
        self.db.flush()
        return membership

    def transfer_owner(self, current_owner: TeamMembership, new_owner: TeamMembership) -> None:
        """
        Demote the current owner to ADMIN and promote new_owner to OWNER.

        The demotion is flushed first so the single-owner index never sees
        two owners. Both halves are version-checked against the rows as they
        were read; the caller's transaction makes them all-or-nothing.
        """
        if current_owner.role != TeamRole.OWNER:
            raise InvariantViolationException(f"User {current_owner.user_id} is not the team owner")
        if new_owner.team_id != current_owner.team_id:
            raise InvariantViolationException("New owner belongs to a different team")
        if new_owner.role not in (TeamRole.ADMIN, TeamRole.MEMBER):
            raise InvariantViolationException(f"Cannot promote a {new_owner.role.value} to owner")

        current_owner.role = TeamRole.ADMIN
        self.db.flush()
        new_owner.role = TeamRole.OWNER
        self.db.flush()

    def delete(self, membership: TeamMembership) -> None:
        """
        Remove a user from a team.

        Raises:
            InvariantViolationException: For the OWNER or a SUPER_ADMIN row
        """
        if membership.role == TeamRole.SUPER_ADMIN:
            raise InvariantViolationException("super_admin memberships cannot be removed here")
        if membership.role == TeamRole.OWNER:
            raise InvariantViolationException("Removing the owner would leave the team without an owner")

        self.db.delete(membership)
        self.db.flush()
