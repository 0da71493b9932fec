from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from team_auth.database import get_db
from team_auth.dependencies import AuthenticatedUser, get_actor_context, get_current_user, get_identity_provider
from team_auth.identity.provider import IdentityProvider
from team_auth.models.actor_context import ActorContext
from team_auth.schemas.invitation_schemas import (
    InvitationAcceptRequest,
    InvitationCreate,
    InvitationResponse,
    InvitationRevokeResponse,
)
from team_auth.schemas.team_schemas import MembershipResponse
from team_auth.services.invitation_service import InvitationService

# Mounted under /api/teams/{team_id}/invitations
team_router = APIRouter()

# Mounted under /api/invitations
router = APIRouter()


@team_router.post("", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
async def invite_member(
    invite: InvitationCreate,
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Invite an e-mail address to the team.

    - Owners invite as ADMIN or MEMBER, admins likewise, super admins also
      as OWNER
    - The invitation link is delivered by the identity provider; the
      response never contains the token
    """
    service = InvitationService(db, identity)
    return service.create_invite(context, invite.email, invite.role)


@team_router.get("", response_model=list[InvitationResponse])
async def list_pending_invites(
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """List the team's pending, unexpired invitations (owners and admins)."""
    service = InvitationService(db, identity)
    return service.list_pending_invites(context)


@team_router.delete("/{invite_id}", response_model=InvitationRevokeResponse)
async def revoke_invite(
    invite_id: str,
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Revoke a pending invitation.

    Idempotent: returns `not_pending` when there is nothing to revoke,
    without revealing whether the invitation ever existed.
    """
    service = InvitationService(db, identity)
    return {"invite_id": invite_id, "status": service.revoke_invite(context, invite_id)}


@router.post("/accept", response_model=MembershipResponse)
async def accept_invite(
    accept: InvitationAcceptRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Accept an invitation as the signed-in user.

    The signed-in e-mail must match the invited address (400 EMAIL_MISMATCH).
    """
    service = InvitationService(db, identity)
    return service.accept_invite(accept.token, current.user)
