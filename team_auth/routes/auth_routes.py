from fastapi import APIRouter, Depends

from team_auth.dependencies import get_identity_provider, get_platform_actor
from team_auth.identity.provider import IdentityProvider
from team_auth.models.actor_context import ActorContext
from team_auth.schemas.auth_schemas import VerifyTokenRequest, VerifyTokenResponse, WhoAmIResponse

router = APIRouter()


@router.post("/verify", response_model=VerifyTokenResponse)
async def verify_one_time_token(
    request: VerifyTokenRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Exchange a one-time link token (e.g. from an invitation e-mail) for a
    session. Unknown e-mails are signed up on first use.
    """
    credential = identity.verify_one_time_token(request.token)
    return {"credential": credential, "metadata": credential.metadata}


@router.get("/me", response_model=WhoAmIResponse)
async def whoami(context: ActorContext = Depends(get_platform_actor)):
    """The caller's identity, team and role; shows the impersonator when acting as someone."""
    return {
        "user_id": context.user_id,
        "email": context.email,
        "team_id": context.team_id,
        "role": context.role,
        "impersonator_id": context.impersonator_id,
        "session_id": context.session_id,
    }
