from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from team_auth.database import get_db
from team_auth.dependencies import get_identity_provider, get_platform_actor
from team_auth.identity.provider import IdentityProvider
from team_auth.models.actor_context import ActorContext
from team_auth.schemas.user_schemas import UserDeleteResponse
from team_auth.services.user_service import UserService

router = APIRouter()


@router.delete("/{user_id}", response_model=UserDeleteResponse)
async def delete_user(
    user_id: str,
    context: ActorContext = Depends(get_platform_actor),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Delete a user account.

    - Owners and admins may delete users of their own team
    - Only a super admin may delete a team owner, and only once nobody else
      is left in that team
    - Open impersonation sessions involving the user are closed
    """
    service = UserService(db, identity)
    service.delete_user(context, user_id)
    return {"message": "User deleted successfully", "deleted_user_id": user_id}
