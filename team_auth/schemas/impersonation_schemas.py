from datetime import datetime

from pydantic import BaseModel, Field

from team_auth.models.impersonation_session import SessionEndReason
from team_auth.schemas.auth_schemas import CredentialResponse


class ImpersonationStartRequest(BaseModel):
    target_user_id: str = Field(..., min_length=1)
    reason: str = Field(..., description="Why support needs to act as this user")


class ImpersonationSessionResponse(BaseModel):
    id: str
    admin_user_id: str
    target_user_id: str
    reason: str
    started_at: datetime
    expires_at: datetime
    ended_at: datetime | None = None
    end_reason: SessionEndReason | None = None

    model_config = {"from_attributes": True}


class ImpersonationStartResponse(BaseModel):
    """Both credentials: act with `impersonated`, restore `original` afterwards"""

    session: ImpersonationSessionResponse
    impersonated: CredentialResponse
    original: CredentialResponse | None = None


class ImpersonationStopRequest(BaseModel):
    session_id: str | None = Field(default=None, description="Defaults to every session the caller takes part in")


class ImpersonationStopResponse(BaseModel):
    already_ended: bool
    ended_count: int
