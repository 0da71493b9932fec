from datetime import datetime

from pydantic import BaseModel, Field

from team_auth.models.role import TeamRole


class CredentialResponse(BaseModel):
    """Session credential issued by the identity provider"""

    access_token: str
    token_type: str = "bearer"
    user_id: str
    expires_at: datetime

    model_config = {"from_attributes": True}


class VerifyTokenRequest(BaseModel):
    """Exchange a one-time link token for a session"""

    token: str = Field(..., min_length=1)


class VerifyTokenResponse(BaseModel):
    credential: CredentialResponse
    metadata: dict = Field(default_factory=dict, description="Claims carried by the link (team_id, role, ...)")


class WhoAmIResponse(BaseModel):
    """The authenticated actor as the API sees it"""

    user_id: str
    email: str | None = None
    team_id: str | None = None
    role: TeamRole | None = None
    impersonator_id: str | None = None
    session_id: str | None = None
