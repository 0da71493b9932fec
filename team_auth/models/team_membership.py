"""Team membership model linking users to teams with roles."""

from datetime import datetime

from sqlalchemy import Integer, String, DateTime, ForeignKey, Enum, Index, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import TYPE_CHECKING

from team_auth.models.base import Base, utcnow
from team_auth.models.role import TeamRole

if TYPE_CHECKING:
    from team_auth.models.team import Team


class TeamMembership(Base):
    """
    Join table linking users to teams with roles.

    Constraints:
    - Primary key (team_id, user_id) - one role per user per team
    - uq_team_members_single_owner - at most one OWNER per team, enforced by
      the database itself so concurrent ownership transfers cannot both land
    - uq_team_members_user - a user belongs to at most one team
    - version - optimistic concurrency counter; an UPDATE or DELETE based on
      a stale read matches no row and fails
    """

    __tablename__ = "team_members"

    team_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("teams.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role: Mapped[TeamRole] = mapped_column(
        Enum(TeamRole, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TeamRole.MEMBER,
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    team: Mapped["Team"] = relationship("Team", back_populates="memberships")

    __table_args__ = (
        Index(
            "uq_team_members_single_owner",
            "team_id",
            unique=True,
            sqlite_where=text("role = 'owner'"),
            postgresql_where=text("role = 'owner'"),
        ),
        UniqueConstraint("user_id", name="uq_team_members_user"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<TeamMembership(team_id={self.team_id}, user_id={self.user_id}, role={self.role.value})>"
