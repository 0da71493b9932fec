from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from team_auth.core.security import password_policy_errors
from team_auth.models.role import TeamRole
from team_auth.schemas.auth_schemas import CredentialResponse


class TeamResponse(BaseModel):
    """Team details response"""

    id: str
    name: str
    address: str | None = None
    vat_number: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TeamSignupRequest(BaseModel):
    """Sign up a new user together with their team"""

    email: EmailStr
    team_name: str = Field(..., min_length=1, max_length=255)
    password: str | None = Field(default=None, max_length=255)
    full_name: str | None = Field(default=None, max_length=255)

    @field_validator("password")
    @classmethod
    def check_password_policy(cls, value: str | None) -> str | None:
        """Link-only signups send no password; a given one must meet the policy."""
        if value is None:
            return value
        errors = password_policy_errors(value)
        if errors:
            raise ValueError("; ".join(errors))
        return value


class TeamSignupResponse(BaseModel):
    team: TeamResponse
    user_id: str
    credential: CredentialResponse


class TeamUpdate(BaseModel):
    """Update team details (owner, admin or super_admin)"""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = None
    vat_number: str | None = Field(default=None, max_length=64)


class TeamDeleteRequest(BaseModel):
    confirm_deletion: bool = Field(default=False, description="Must be true to delete the team")


class TeamMemberResponse(BaseModel):
    """Team member details with profile info"""

    user_id: str
    email: str | None = None
    full_name: str | None = None
    role: TeamRole
    joined_at: datetime

    model_config = {"from_attributes": True}


class TeamMembersResponse(BaseModel):
    members: list[TeamMemberResponse]
    assignable_roles: list[TeamRole] = Field(
        default_factory=list, description="Roles the caller may assign to other members"
    )


class MembershipResponse(BaseModel):
    team_id: str
    user_id: str
    role: TeamRole
    joined_at: datetime

    model_config = {"from_attributes": True}


class TeamRoleUpdate(BaseModel):
    """Change a member's role"""

    role: TeamRole = Field(..., description="New role to assign")


class TransferOwnershipRequest(BaseModel):
    new_owner_id: str = Field(..., min_length=1)


class TeamMemberRemoveResponse(BaseModel):
    """Response after removing member"""

    message: str
    removed_user_id: str
