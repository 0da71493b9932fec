"""Team model for multi-tenant isolation."""

from sqlalchemy import String, Text, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import TYPE_CHECKING

from team_auth.models.base import Base, TimestampMixin, new_id

if TYPE_CHECKING:
    from team_auth.models.team_membership import TeamMembership
    from team_auth.models.invitation import Invitation


class Team(Base, TimestampMixin):
    """
    Multi-tenant isolation boundary.

    A team is created on signup together with its owner. Users join it
    through invitations and hold exactly one role in it. Deleting a team
    removes its memberships and invitations.
    """

    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    vat_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Relationships
    memberships: Mapped[list["TeamMembership"]] = relationship(
        "TeamMembership",
        back_populates="team",
        cascade="all, delete-orphan",
    )
    invitations: Mapped[list["Invitation"]] = relationship(
        "Invitation",
        back_populates="team",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("name", name="uq_teams_name"),
        CheckConstraint("length(trim(name)) > 0", name="ck_teams_name_not_empty"),
    )

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name='{self.name}')>"
