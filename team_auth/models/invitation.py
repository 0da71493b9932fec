"""Invitation model for the pending-invite workflow."""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import String, DateTime, ForeignKey, Enum, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import TYPE_CHECKING

from team_auth.models.base import Base, TimestampMixin, new_id
from team_auth.models.role import TeamRole

if TYPE_CHECKING:
    from team_auth.models.team import Team


class InvitationStatus(str, PyEnum):
    """Invitation lifecycle status. Only PENDING has outgoing transitions."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"


class Invitation(Base, TimestampMixin):
    """
    Invitation for an e-mail address to join a team at a given role.

    The raw token is handed to the identity provider for delivery; only its
    SHA-256 hash is stored. An expired PENDING row is treated as revoked the
    next time it is read.
    """

    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    invited_by: Mapped[str] = mapped_column(String(36), nullable=False)
    role: Mapped[TeamRole] = mapped_column(
        Enum(TeamRole, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TeamRole.MEMBER,
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[InvitationStatus] = mapped_column(
        Enum(InvitationStatus, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=InvitationStatus.PENDING,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Relationships
    team: Mapped["Team"] = relationship("Team", back_populates="invitations")

    __table_args__ = (
        # At most one outstanding invite per (team, email)
        Index(
            "uq_invitations_pending_team_email",
            "team_id",
            "email",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return f"<Invitation(id={self.id}, team_id={self.team_id}, email='{self.email}', status={self.status.value})>"
