"""Team role enum for role-based access control."""

from enum import Enum as PyEnum


class TeamRole(str, PyEnum):
    """
    Team membership roles.

    Role Hierarchy (highest to lowest):
    1. SUPER_ADMIN - Platform-wide support role, may impersonate users
    2. OWNER - Full control of one team, exactly one per team
    3. ADMIN - Manage members (narrower slice than owner), update team
    4. MEMBER - Regular team member

    The hierarchy is only used for route guards. Who may change whom is
    decided by the explicit matrices in team_auth.core.policy.
    """

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    SUPER_ADMIN = "super_admin"
