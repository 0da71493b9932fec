"""Repository for Invitation model operations."""

from datetime import datetime

from sqlalchemy.orm import Session

from team_auth.models.invitation import Invitation, InvitationStatus


class InvitationRepository:
    """Repository for Invitation model operations. Writes flush; services commit."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, invite_id: str) -> Invitation | None:
        return self.db.query(Invitation).filter(Invitation.id == invite_id).first()

    def get_by_token_hash(self, token_hash: str) -> Invitation | None:
        """
        Look an invitation up by the SHA-256 hash of its token.

        Args:
            token_hash: hex digest from team_auth.core.security.hash_token

        Returns:
            Invitation or None if no invitation was issued with that token
        """
        return self.db.query(Invitation).filter(Invitation.token_hash == token_hash).first()

    def get_pending(self, team_id: str, email: str) -> Invitation | None:
        """Get the PENDING invitation for (team, email), expired or not"""
        return (
            self.db.query(Invitation)
            .filter(
                Invitation.team_id == team_id,
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING,
            )
            .first()
        )

    def get_live_pending_for_team(self, team_id: str, now: datetime) -> list[Invitation]:
        """
        Get PENDING invitations of a team that have not expired yet.

        Args:
            team_id: Team ID
            now: Naive UTC reference time

        Returns:
            Invitations, newest first
        """
        return (
            self.db.query(Invitation)
            .filter(
                Invitation.team_id == team_id,
                Invitation.status == InvitationStatus.PENDING,
                Invitation.expires_at > now,
            )
            .order_by(Invitation.created_at.desc())
            .all()
        )

    def create(self, invitation: Invitation) -> Invitation:
        """
        Raises:
            IntegrityError: On flush, if a PENDING invite for (team, email)
                was written concurrently
        """
        self.db.add(invitation)
        self.db.flush()
        return invitation

    def set_status(self, invitation: Invitation, status: InvitationStatus) -> Invitation:
        invitation.status = status
        self.db.flush()
        return invitation
