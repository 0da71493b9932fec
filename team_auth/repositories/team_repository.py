"""Repository for Team model operations."""

from sqlalchemy import func
from sqlalchemy.orm import Session

from team_auth.models.team import Team


class TeamRepository:
    """Repository for Team model operations. Writes flush; services commit."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, team_id: str) -> Team | None:
        """
        Get team by ID.

        Args:
            team_id: Team ID

        Returns:
            Team object or None if not found
        """
        return self.db.query(Team).filter(Team.id == team_id).first()

    def get_by_name(self, name: str) -> Team | None:
        """Case-insensitive lookup by team name"""
        return self.db.query(Team).filter(func.lower(Team.name) == name.strip().lower()).first()

    def create(self, team: Team) -> Team:
        """
        Add a new team.

        Args:
            team: Team object to create

        Returns:
            Team object with ID populated

        Raises:
            IntegrityError: On flush, if the name is already taken
        """
        self.db.add(team)
        self.db.flush()
        return team

    def update(self, team: Team) -> Team:
        self.db.flush()
        return team

    def delete(self, team: Team) -> None:
        """
        Delete a team.

        WARNING: This cascades to every membership and invitation of the
        team.

        Args:
            team: Team object to delete
        """
        self.db.delete(team)
        self.db.flush()
