from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from team_auth.models.invitation import InvitationStatus
from team_auth.models.role import TeamRole


class InvitationCreate(BaseModel):
    """Invite an e-mail address to the team"""

    email: EmailStr
    role: TeamRole = Field(default=TeamRole.MEMBER, description="Role granted on acceptance (default: MEMBER)")


class InvitationResponse(BaseModel):
    """Invitation details. The token itself is never returned."""

    id: str
    team_id: str
    email: str
    role: TeamRole
    status: InvitationStatus
    invited_by: str
    expires_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class InvitationAcceptRequest(BaseModel):
    token: str = Field(..., min_length=1, description="Token from the invitation link")


class InvitationRevokeResponse(BaseModel):
    invite_id: str
    status: str = Field(..., description="'revoked', or 'not_pending' when there was nothing to revoke")
