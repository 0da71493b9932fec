"""
Authorization policy engine.

Every decision is a pure function of (actor role, actor id, target,
operation, payload). Nothing in this module reads the database or talks to
the identity provider, so each rule can be exercised in isolation.

Two kinds of checks live here and are kept apart on purpose:

- Hierarchical checks (has_role_level) compare levels and back coarse route
  guards.
- Exact-capability checks use the matrices below. Each role has a fixed,
  non-inherited set of roles it may assign, modify, remove or invite. An
  admin's slice is narrower than "everything below admin", so these tables
  must never be collapsed into a level comparison.
"""

from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Any, Callable

from team_auth.core.exceptions import ErrorCode, ForbiddenException
from team_auth.models.actor_context import ROLE_HIERARCHY
from team_auth.models.role import TeamRole


class Operation(str, PyEnum):
    UPDATE_ROLE = "update_role"
    REMOVE_MEMBER = "remove_member"
    INVITE_MEMBER = "invite_member"
    REVOKE_INVITE = "revoke_invite"
    TRANSFER_OWNERSHIP = "transfer_ownership"
    UPDATE_TEAM = "update_team"
    DELETE_TEAM = "delete_team"
    VIEW_MEMBERS = "view_members"
    VIEW_INVITES = "view_invites"
    IMPERSONATE = "impersonate"
    DELETE_USER = "delete_user"


@dataclass(frozen=True)
class Target:
    """
    The subject of an operation.

    Attributes:
        user_id: Targeted user, None for team-level operations
        role: Target's current role in the team (None if not a member)
        team_id: Team the target belongs to
    """

    user_id: str | None = None
    role: TeamRole | None = None
    team_id: str | None = None


@dataclass(frozen=True)
class Decision:
    """Allow, or Deny with a structured reason code."""

    allowed: bool
    reason: ErrorCode | None = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.allowed

    def raise_for_denial(self) -> None:
        """Raise ForbiddenException carrying the reason code if denied."""
        if not self.allowed:
            raise ForbiddenException(self.message, self.reason)


ALLOW = Decision(allowed=True)


def deny(reason: ErrorCode, message: str) -> Decision:
    return Decision(allowed=False, reason=reason, message=message)


# Display order for role lists
_ROLE_ORDER = (TeamRole.MEMBER, TeamRole.ADMIN, TeamRole.OWNER)

_NONE: frozenset[TeamRole] = frozenset()

# Roles an actor may set on a membership
ASSIGNABLE_ROLES: dict[TeamRole, frozenset[TeamRole]] = {
    TeamRole.SUPER_ADMIN: frozenset({TeamRole.MEMBER, TeamRole.ADMIN, TeamRole.OWNER}),
    TeamRole.OWNER: frozenset({TeamRole.MEMBER, TeamRole.ADMIN}),
    TeamRole.ADMIN: frozenset({TeamRole.MEMBER, TeamRole.ADMIN}),
    TeamRole.MEMBER: _NONE,
}

# Current target roles an actor may change
MODIFIABLE_TARGET_ROLES: dict[TeamRole, frozenset[TeamRole]] = {
    TeamRole.SUPER_ADMIN: frozenset({TeamRole.MEMBER, TeamRole.ADMIN, TeamRole.OWNER}),
    TeamRole.OWNER: frozenset({TeamRole.MEMBER, TeamRole.ADMIN, TeamRole.OWNER}),
    TeamRole.ADMIN: frozenset({TeamRole.MEMBER}),
    TeamRole.MEMBER: _NONE,
}

# Current target roles an actor may remove from the team
REMOVABLE_TARGET_ROLES: dict[TeamRole, frozenset[TeamRole]] = {
    TeamRole.SUPER_ADMIN: frozenset({TeamRole.MEMBER, TeamRole.ADMIN, TeamRole.OWNER}),
    TeamRole.OWNER: frozenset({TeamRole.MEMBER, TeamRole.ADMIN, TeamRole.OWNER}),
    TeamRole.ADMIN: frozenset({TeamRole.MEMBER}),
    TeamRole.MEMBER: _NONE,
}

# Roles an actor may put on an invitation; never wider than ASSIGNABLE_ROLES
INVITABLE_ROLES: dict[TeamRole, frozenset[TeamRole]] = {
    TeamRole.SUPER_ADMIN: frozenset({TeamRole.MEMBER, TeamRole.ADMIN, TeamRole.OWNER}),
    TeamRole.OWNER: frozenset({TeamRole.MEMBER, TeamRole.ADMIN}),
    TeamRole.ADMIN: frozenset({TeamRole.MEMBER, TeamRole.ADMIN}),
    TeamRole.MEMBER: _NONE,
}

# Current target roles whose whole account an actor may delete
DELETABLE_TARGET_ROLES: dict[TeamRole, frozenset[TeamRole]] = {
    TeamRole.SUPER_ADMIN: frozenset({TeamRole.MEMBER, TeamRole.ADMIN, TeamRole.OWNER}),
    TeamRole.OWNER: frozenset({TeamRole.MEMBER, TeamRole.ADMIN}),
    TeamRole.ADMIN: frozenset({TeamRole.MEMBER, TeamRole.ADMIN}),
    TeamRole.MEMBER: _NONE,
}

TEAM_UPDATE_ROLES = frozenset({TeamRole.OWNER, TeamRole.ADMIN, TeamRole.SUPER_ADMIN})
TEAM_DELETE_ROLES = frozenset({TeamRole.OWNER, TeamRole.SUPER_ADMIN})
INVITE_VIEW_ROLES = frozenset({TeamRole.OWNER, TeamRole.ADMIN, TeamRole.SUPER_ADMIN})
TRANSFER_ROLES = frozenset({TeamRole.OWNER, TeamRole.SUPER_ADMIN})

# Operations that change or remove another member's row
MEMBER_MUTATIONS = frozenset(
    {Operation.UPDATE_ROLE, Operation.REMOVE_MEMBER, Operation.TRANSFER_OWNERSHIP, Operation.DELETE_USER}
)


def has_role_level(actor_role: TeamRole | None, required_role: TeamRole) -> bool:
    """Hierarchical check: actor's level >= required level."""
    if actor_role is None:
        return False
    return ROLE_HIERARCHY[actor_role] >= ROLE_HIERARCHY[required_role]


def _ordered(roles: frozenset[TeamRole]) -> list[TeamRole]:
    return [role for role in _ROLE_ORDER if role in roles]


def assignable_roles(actor_role: TeamRole | None) -> list[TeamRole]:
    """Roles the actor may assign, in display order. Never includes super_admin."""
    if actor_role is None:
        return []
    return _ordered(ASSIGNABLE_ROLES[actor_role])


def invitable_roles(actor_role: TeamRole | None) -> list[TeamRole]:
    """Roles the actor may invite someone at, in display order."""
    if actor_role is None:
        return []
    return _ordered(INVITABLE_ROLES[actor_role])


def _requested_role(payload: dict[str, Any]) -> TeamRole | None:
    role = payload.get("role")
    if role is None:
        return None
    return TeamRole(role)


def _decide_update_role(actor_role: TeamRole, target: Target, payload: dict[str, Any]) -> Decision:
    if target.role is None:
        return deny(ErrorCode.NOT_TEAM_MEMBER, "Target user is not a member of this team")
    new_role = _requested_role(payload)
    if new_role is None:
        return deny(ErrorCode.ROLE_FORBIDDEN, "A new role is required")
    if target.role not in MODIFIABLE_TARGET_ROLES[actor_role]:
        return deny(
            ErrorCode.ROLE_FORBIDDEN,
            f"Role {actor_role.value} cannot change the role of a {target.role.value}",
        )
    if new_role not in ASSIGNABLE_ROLES[actor_role]:
        return deny(
            ErrorCode.ROLE_FORBIDDEN,
            f"Role {actor_role.value} cannot assign the {new_role.value} role",
        )
    return ALLOW


def _decide_remove_member(actor_role: TeamRole, target: Target, payload: dict[str, Any]) -> Decision:
    if target.role is None:
        return deny(ErrorCode.NOT_TEAM_MEMBER, "Target user is not a member of this team")
    if target.role not in REMOVABLE_TARGET_ROLES[actor_role]:
        return deny(
            ErrorCode.ROLE_FORBIDDEN,
            f"Role {actor_role.value} cannot remove a {target.role.value}",
        )
    return ALLOW


def _decide_invite_member(actor_role: TeamRole, target: Target, payload: dict[str, Any]) -> Decision:
    role = _requested_role(payload) or TeamRole.MEMBER
    if role not in INVITABLE_ROLES[actor_role]:
        return deny(
            ErrorCode.ROLE_FORBIDDEN,
            f"Role {actor_role.value} cannot invite members as {role.value}",
        )
    return ALLOW


def _decide_revoke_invite(actor_role: TeamRole, target: Target, payload: dict[str, Any]) -> Decision:
    role = _requested_role(payload) or TeamRole.MEMBER
    # Revoking an invite needs the authority to remove someone at that role
    if role not in REMOVABLE_TARGET_ROLES[actor_role]:
        return deny(
            ErrorCode.ROLE_FORBIDDEN,
            f"Role {actor_role.value} cannot revoke an invitation for {role.value}",
        )
    return ALLOW


def _decide_delete_user(actor_role: TeamRole, target: Target, payload: dict[str, Any]) -> Decision:
    if target.role is None:
        return deny(ErrorCode.NOT_TEAM_MEMBER, "Target user is not a member of this team")
    if target.role not in DELETABLE_TARGET_ROLES[actor_role]:
        if target.role == TeamRole.OWNER:
            return deny(ErrorCode.ROLE_FORBIDDEN, "Only super admins can delete team owners")
        return deny(
            ErrorCode.ROLE_FORBIDDEN,
            f"Role {actor_role.value} cannot delete a {target.role.value}",
        )
    return ALLOW


def _decide_transfer(actor_role: TeamRole, target: Target, payload: dict[str, Any]) -> Decision:
    if actor_role not in TRANSFER_ROLES:
        return deny(ErrorCode.ROLE_FORBIDDEN, "Only the team owner can transfer ownership")
    if target.role is None:
        return deny(ErrorCode.NOT_TEAM_MEMBER, "New owner must be a member of the team")
    return ALLOW


def _role_in(allowed: frozenset[TeamRole], message: str) -> Callable[..., Decision]:
    def check(actor_role: TeamRole, target: Target, payload: dict[str, Any]) -> Decision:
        if actor_role not in allowed:
            return deny(ErrorCode.ROLE_FORBIDDEN, message)
        return ALLOW

    return check


_HANDLERS: dict[Operation, Callable[[TeamRole, Target, dict[str, Any]], Decision]] = {
    Operation.UPDATE_ROLE: _decide_update_role,
    Operation.REMOVE_MEMBER: _decide_remove_member,
    Operation.INVITE_MEMBER: _decide_invite_member,
    Operation.REVOKE_INVITE: _decide_revoke_invite,
    Operation.TRANSFER_OWNERSHIP: _decide_transfer,
    Operation.UPDATE_TEAM: _role_in(TEAM_UPDATE_ROLES, "Only owners and admins can update the team"),
    Operation.DELETE_TEAM: _role_in(TEAM_DELETE_ROLES, "Only the team owner can delete the team"),
    Operation.VIEW_MEMBERS: _role_in(frozenset(ROLE_HIERARCHY), "Only team members can view members"),
    Operation.VIEW_INVITES: _role_in(INVITE_VIEW_ROLES, "Only owners and admins can view invitations"),
    Operation.DELETE_USER: _decide_delete_user,
}


def _decide_impersonation(actor_role: TeamRole | None, actor_id: str, target: Target | None) -> Decision:
    if actor_role != TeamRole.SUPER_ADMIN:
        return deny(ErrorCode.IMPERSONATION_UNAUTHORIZED, "Only super admins can impersonate users")
    if target is None or target.user_id is None:
        return deny(ErrorCode.ROLE_FORBIDDEN, "An impersonation target is required")
    if target.user_id == actor_id:
        return deny(ErrorCode.SELF_IMPERSONATION, "Cannot impersonate yourself")
    if target.role == TeamRole.SUPER_ADMIN:
        return deny(ErrorCode.TARGET_IS_PRIVILEGED, "Cannot impersonate other super admin users")
    return ALLOW


def decide(
    actor_role: TeamRole | None,
    actor_id: str,
    target: Target | None,
    operation: Operation,
    payload: dict[str, Any] | None = None,
    actor_team_id: str | None = None,
) -> Decision:
    """
    Decide whether an actor may perform an operation on a target.

    Rules are evaluated in order and the first denial wins:
    1. Member mutations aimed at the actor themself -> SELF_ACTION_FORBIDDEN,
       whatever the actor's role
    2. No role, or a team other than the actor's (unless super_admin)
       -> NOT_TEAM_MEMBER
    3. Member mutations aimed at a super_admin -> TARGET_IS_PRIVILEGED
    4. The operation's matrix -> ROLE_FORBIDDEN

    Args:
        actor_role: Actor's role in the team being acted on
        actor_id: Actor's user id
        target: Subject of the operation (may be None for team-level checks)
        operation: What is being attempted
        payload: Operation input; {"role": ...} for role changes and invites
        actor_team_id: Team the actor's role belongs to

    Returns:
        Decision (truthy when allowed)
    """
    payload = payload or {}

    if operation == Operation.IMPERSONATE:
        return _decide_impersonation(actor_role, actor_id, target)

    if operation in MEMBER_MUTATIONS and target is not None and target.user_id == actor_id:
        return deny(ErrorCode.SELF_ACTION_FORBIDDEN, "Cannot change your own role or remove yourself")

    if actor_role is None:
        return deny(ErrorCode.NOT_TEAM_MEMBER, "You are not a member of this team")

    if (
        actor_role != TeamRole.SUPER_ADMIN
        and actor_team_id is not None
        and target is not None
        and target.team_id is not None
        and target.team_id != actor_team_id
    ):
        return deny(ErrorCode.NOT_TEAM_MEMBER, "You are not a member of this team")

    if operation in MEMBER_MUTATIONS and target is not None and target.role == TeamRole.SUPER_ADMIN:
        return deny(ErrorCode.TARGET_IS_PRIVILEGED, "Super admin memberships cannot be changed here")

    return _HANDLERS[operation](actor_role, target or Target(), payload)
