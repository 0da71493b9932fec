from team_auth.models.base import Base
from team_auth.models.role import TeamRole
from team_auth.models.user import User
from team_auth.models.team import Team
from team_auth.models.team_membership import TeamMembership
from team_auth.models.invitation import Invitation, InvitationStatus
from team_auth.models.impersonation_session import ImpersonationSession, SessionEndReason

__all__ = [
    "Base", "TeamRole", "User", "Team", "TeamMembership",
    "Invitation", "InvitationStatus", "ImpersonationSession", "SessionEndReason",
]
