"""Impersonation session model - the durable audit record of identity assumption."""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import String, Text, DateTime, Enum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from team_auth.models.base import Base, new_id


class SessionEndReason(str, PyEnum):
    """Why a session row was finalised."""

    STOPPED = "stopped"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"
    ISSUANCE_FAILED = "issuance_failed"
    TEAM_DELETED = "team_deleted"
    USER_DELETED = "user_deleted"


class ImpersonationSession(Base):
    """
    One super-admin impersonation of one target user.

    Lifecycle: active (ended_at NULL, now < expires_at) -> ended.
    expires_at is fixed at creation. ended_at is written at most once and a
    row with ended_at set is never modified again. A row past expires_at is
    ended for every read even while ended_at is still NULL.
    """

    __tablename__ = "impersonation_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    admin_user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    target_user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_reason: Mapped[SessionEndReason | None] = mapped_column(
        Enum(SessionEndReason, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("admin_user_id != target_user_id", name="ck_impersonation_different_users"),
        CheckConstraint(
            "ended_at IS NULL OR ended_at >= started_at", name="ck_impersonation_ended_after_started"
        ),
    )

    def is_active(self, now: datetime) -> bool:
        """Active means not closed and not past its fixed expiry."""
        return self.ended_at is None and now < self.expires_at

    def __repr__(self) -> str:
        return (
            f"<ImpersonationSession(id={self.id}, admin={self.admin_user_id}, "
            f"target={self.target_user_id}, ended_at={self.ended_at})>"
        )
