from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from team_auth.database import get_db
from team_auth.dependencies import (
    AuthenticatedUser,
    get_current_user,
    get_identity_provider,
    get_platform_actor,
    get_stopping_actor,
)
from team_auth.identity.provider import IdentityProvider
from team_auth.models.actor_context import ActorContext
from team_auth.schemas.impersonation_schemas import (
    ImpersonationSessionResponse,
    ImpersonationStartRequest,
    ImpersonationStartResponse,
    ImpersonationStopRequest,
    ImpersonationStopResponse,
)
from team_auth.services.impersonation_service import ImpersonationService

router = APIRouter()


@router.post("/start", response_model=ImpersonationStartResponse, status_code=status.HTTP_201_CREATED)
async def start_impersonation(
    request: ImpersonationStartRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    context: ActorContext = Depends(get_platform_actor),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Start acting as another user.

    - **Requires SUPER_ADMIN**
    - `reason` must have at least 10 characters after trimming
    - Returns the impersonated credential and the caller's own credential;
      the impersonated one stops working when the session ends (30 minutes
      by default)
    """
    service = ImpersonationService(db, identity)
    result = service.start_impersonation(
        context,
        request.target_user_id,
        request.reason,
        original_credential=current.credential,
    )
    return {"session": result.session, "impersonated": result.impersonated, "original": result.original}


@router.post("/stop", response_model=ImpersonationStopResponse)
async def stop_impersonation(
    request: ImpersonationStopRequest,
    context: ActorContext = Depends(get_stopping_actor),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    End impersonation. Callable with either the admin's or the
    impersonated token, any number of times.
    """
    service = ImpersonationService(db, identity)
    result = service.stop_impersonation(context, session_id=request.session_id)
    return {"already_ended": result.already_ended, "ended_count": result.ended_count}


@router.get("/sessions", response_model=list[ImpersonationSessionResponse])
async def list_sessions(
    context: ActorContext = Depends(get_platform_actor),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """The caller's own impersonation history (super admins only)."""
    service = ImpersonationService(db, identity)
    return service.list_sessions(context)
