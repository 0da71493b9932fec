"""Actor context for request authorization."""

from dataclasses import dataclass

from team_auth.models.role import TeamRole


ROLE_HIERARCHY = {
    TeamRole.SUPER_ADMIN: 4,
    TeamRole.OWNER: 3,
    TeamRole.ADMIN: 2,
    TeamRole.MEMBER: 1,
}


@dataclass(frozen=True)
class ActorContext:
    """
    Who is acting, in which team, with which role.

    Resolved once per request from the verified token and the membership
    store, then passed explicitly into every service call.

    Attributes:
        user_id: Identity the request is authenticated as
        role: The actor's role for team_id (SUPER_ADMIN for platform admins
            acting on any team), None if the actor has no role there
        team_id: The team being acted on, None for platform-level calls
        email: Actor's e-mail, when known
        impersonator_id: Original super_admin when the request runs under an
            impersonation session
        session_id: Impersonation session id, if any
    """

    user_id: str
    role: TeamRole | None
    team_id: str | None = None
    email: str | None = None
    impersonator_id: str | None = None
    session_id: str | None = None

    def has_permission(self, required_role: TeamRole) -> bool:
        """
        Check if actor's role meets or exceeds required role.

        Role hierarchy: SUPER_ADMIN (4) > OWNER (3) > ADMIN (2) > MEMBER (1)

        Only for coarse route guards; membership mutations use the
        exact-capability matrices in team_auth.core.policy.
        """
        if self.role is None:
            return False
        return ROLE_HIERARCHY[self.role] >= ROLE_HIERARCHY[required_role]

    def is_owner(self) -> bool:
        return self.role == TeamRole.OWNER

    def is_super_admin(self) -> bool:
        return self.role == TeamRole.SUPER_ADMIN

    @property
    def is_impersonated(self) -> bool:
        return self.session_id is not None

    def __repr__(self) -> str:
        role = self.role.value if self.role else None
        return f"<ActorContext(user_id={self.user_id}, team_id={self.team_id}, role={role})>"
