"""Repository for ImpersonationSession model operations."""

from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from team_auth.models.impersonation_session import ImpersonationSession, SessionEndReason


class ImpersonationSessionRepository:
    """
    Repository for ImpersonationSession model operations.

    Rows are closed with conditional UPDATEs (WHERE ended_at IS NULL), so
    ended_at is written at most once even when two callers race.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, session_id: str) -> ImpersonationSession | None:
        return self.db.query(ImpersonationSession).filter(ImpersonationSession.id == session_id).first()

    def create(self, session: ImpersonationSession) -> ImpersonationSession:
        self.db.add(session)
        self.db.flush()
        return session

    def list_for_admin(self, admin_user_id: str) -> list[ImpersonationSession]:
        """
        Get an admin's sessions, newest first.

        Args:
            admin_user_id: The super_admin who started the sessions

        Returns:
            List of ImpersonationSession rows
        """
        return (
            self.db.query(ImpersonationSession)
            .filter(ImpersonationSession.admin_user_id == admin_user_id)
            .order_by(ImpersonationSession.started_at.desc())
            .all()
        )

    def end_sessions(
        self,
        ended_at: datetime,
        end_reason: SessionEndReason,
        session_id: str | None = None,
        participant_id: str | None = None,
        admin_user_id: str | None = None,
        target_user_ids: list[str] | None = None,
    ) -> int:
        """
        Close every open row matching the given filters.

        Args:
            ended_at: Timestamp to write
            end_reason: Why the rows are being closed
            session_id: Match one session
            participant_id: Match rows where this user is admin or target
            admin_user_id: Match rows started by this admin
            target_user_ids: Match rows targeting any of these users

        Returns:
            Number of rows this call closed (0 if they were already closed)
        """
        if session_id is None and participant_id is None and admin_user_id is None and target_user_ids is None:
            raise ValueError("end_sessions needs at least one filter")

        stmt = update(ImpersonationSession).where(ImpersonationSession.ended_at.is_(None))
        if session_id is not None:
            stmt = stmt.where(ImpersonationSession.id == session_id)
        if participant_id is not None:
            stmt = stmt.where(
                or_(
                    ImpersonationSession.admin_user_id == participant_id,
                    ImpersonationSession.target_user_id == participant_id,
                )
            )
        if admin_user_id is not None:
            stmt = stmt.where(ImpersonationSession.admin_user_id == admin_user_id)
        if target_user_ids is not None:
            stmt = stmt.where(ImpersonationSession.target_user_id.in_(target_user_ids))

        stmt = stmt.values(ended_at=ended_at, end_reason=end_reason).execution_options(
            synchronize_session="fetch"
        )
        result = self.db.execute(stmt)
        return result.rowcount

    def end_expired(self, now: datetime) -> int:
        """
        Close open rows whose expiry has passed, stamping ended_at with the
        expiry itself rather than the sweep time.

        Returns:
            Number of rows closed
        """
        stmt = (
            update(ImpersonationSession)
            .where(
                ImpersonationSession.ended_at.is_(None),
                ImpersonationSession.expires_at <= now,
            )
            .values(ended_at=ImpersonationSession.expires_at, end_reason=SessionEndReason.EXPIRED)
            .execution_options(synchronize_session="fetch")
        )
        result = self.db.execute(stmt)
        return result.rowcount
