from pydantic import BaseModel


class UserDeleteResponse(BaseModel):
    """Response after deleting a user account"""

    message: str
    deleted_user_id: str
