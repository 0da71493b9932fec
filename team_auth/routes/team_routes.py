from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from team_auth.database import get_db
from team_auth.dependencies import get_actor_context, get_identity_provider
from team_auth.identity.provider import IdentityProvider
from team_auth.models.actor_context import ActorContext
from team_auth.schemas.team_schemas import (
    MembershipResponse,
    TeamDeleteRequest,
    TeamMemberRemoveResponse,
    TeamMembersResponse,
    TeamResponse,
    TeamRoleUpdate,
    TeamSignupRequest,
    TeamSignupResponse,
    TeamUpdate,
    TransferOwnershipRequest,
)
from team_auth.services.membership_service import MembershipService
from team_auth.services.team_service import TeamService

router = APIRouter()


@router.post("", response_model=TeamSignupResponse, status_code=status.HTTP_201_CREATED)
async def signup_with_team(
    signup: TeamSignupRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Sign up a new user together with their team.

    - The new user becomes the team's OWNER
    - Team names are unique (409 TEAM_EXISTS), so are e-mails
      (409 EMAIL_ALREADY_EXISTS)
    - Returns a session credential for the new owner
    """
    service = TeamService(db, identity)
    result = service.create_team_with_owner(
        signup.email,
        signup.team_name,
        password=signup.password,
        full_name=signup.full_name,
    )
    return {"team": result.team, "user_id": result.user.id, "credential": result.credential}


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Get team details. Available to all members."""
    service = TeamService(db, identity)
    return service.get_team(context)


@router.patch("/{team_id}", response_model=TeamResponse)
async def update_team(
    team_update: TeamUpdate,
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Update team name, address or VAT number.

    - **Requires OWNER, ADMIN or SUPER_ADMIN**
    """
    service = TeamService(db, identity)
    return service.update_team(context, team_update.model_dump(exclude_unset=True))


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    delete_request: TeamDeleteRequest,
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Delete the team with all memberships and invitations.

    - **Requires OWNER or SUPER_ADMIN**
    - Body must contain `confirm_deletion: true` (400 CONFIRMATION_REQUIRED)
    """
    service = TeamService(db, identity)
    service.delete_team(context, confirm_deletion=delete_request.confirm_deletion)
    return None


@router.get("/{team_id}/members", response_model=TeamMembersResponse)
async def list_members(
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    List all members of the team.

    Also returns the roles the caller may assign, so clients can render
    only the choices that will be accepted.
    """
    service = MembershipService(db, identity)
    return {
        "members": service.get_members_with_profiles(context),
        "assignable_roles": service.get_assignable_roles(context),
    }


@router.patch("/{team_id}/members/{user_id}/role", response_model=MembershipResponse)
async def update_member_role(
    user_id: str,
    role_update: TeamRoleUpdate,
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """
    Change a member's role.

    - Owners may assign ADMIN or MEMBER to anyone but themselves
    - Admins may change MEMBERs only
    - Promoting to OWNER (super_admin only) transfers ownership
    """
    service = MembershipService(db)
    return service.update_member_role(context, user_id, role_update.role)


@router.delete("/{team_id}/members/{user_id}", response_model=TeamMemberRemoveResponse)
async def remove_member(
    user_id: str,
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """
    Remove a member from the team.

    - Owners may remove anyone but themselves
    - Admins may remove MEMBERs only
    - The owner cannot be removed; transfer ownership first
    """
    service = MembershipService(db)
    service.remove_member(context, user_id)
    return {"message": "Member removed successfully", "removed_user_id": user_id}


@router.post("/{team_id}/transfer-ownership", response_model=MembershipResponse)
async def transfer_ownership(
    transfer: TransferOwnershipRequest,
    context: ActorContext = Depends(get_actor_context),
    db: Session = Depends(get_db),
):
    """
    Transfer ownership to another member.

    - **Requires OWNER or SUPER_ADMIN**
    - The previous owner becomes an ADMIN
    - 409 CONCURRENT_MODIFICATION if another transfer won the race
    """
    service = MembershipService(db)
    return service.transfer_ownership(context, transfer.new_owner_id)
