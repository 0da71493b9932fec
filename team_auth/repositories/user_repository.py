from sqlalchemy.orm import Session
from team_auth.models.user import User


class UserRepository:
    """Repository for User model operations (local identity provider only)"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, email: str, full_name: str | None = None, password_hash: str | None = None) -> User:
        """
        Create a user and commit.

        Args:
            email: Already normalised e-mail address
            full_name: Optional display name
            password_hash: bcrypt hash, None for link-only accounts

        Returns:
            Created User object with ID populated

        Raises:
            IntegrityError: If the e-mail is already registered
        """
        user = User(email=email, full_name=full_name, password_hash=password_hash)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_by_email(self, email: str) -> User | None:
        """Get user by normalised e-mail"""
        return self.db.query(User).filter(User.email == email).first()

    def get_by_id(self, user_id: str) -> User | None:
        """Get user by ID"""
        return self.db.query(User).filter(User.id == user_id).first()

    def update(self, user: User) -> User:
        self.db.commit()
        self.db.refresh(user)
        return user

    def delete(self, user: User) -> None:
        self.db.delete(user)
        self.db.commit()
