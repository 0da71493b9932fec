import pytest

from team_auth.core.exceptions import ConflictException, ErrorCode, ForbiddenException, ValidationException
from team_auth.models import ImpersonationSession, Invitation, SessionEndReason, Team, TeamMembership, TeamRole
from team_auth.services.impersonation_service import ImpersonationService
from team_auth.services.invitation_service import InvitationService
from team_auth.services.membership_service import MembershipService
from team_auth.services.team_service import TeamService


@pytest.fixture
def service(db_session, identity):
    return TeamService(db_session, identity)


def context_for(db_session, user, team):
    return MembershipService(db_session).build_actor_context(user.id, team_id=team.team.id)


class TestCreateTeamWithOwner:
    """Tests for TeamService.create_team_with_owner"""

    def test_signup_creates_owner(self, service, db_session):
        result = service.create_team_with_owner("Founder@Example.com", "  Initech  ", full_name="Bill")

        assert result.team.name == "Initech"
        assert result.user.email == "founder@example.com"
        assert result.credential.user_id == result.user.id
        membership = db_session.get(TeamMembership, (result.team.id, result.user.id))
        assert membership.role == TeamRole.OWNER

    def test_team_name_taken(self, service, db_session, team):
        with pytest.raises(ConflictException) as exc_info:
            service.create_team_with_owner("new@example.com", "acme")
        assert exc_info.value.code == ErrorCode.TEAM_EXISTS
        assert service.identity.get_user_by_email("new@example.com") is None

    def test_email_taken(self, service, team):
        with pytest.raises(ConflictException) as exc_info:
            service.create_team_with_owner("owner@example.com", "Initech")
        assert exc_info.value.code == ErrorCode.EMAIL_ALREADY_EXISTS

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_empty_name(self, service, db_session, name):
        with pytest.raises(ValidationException):
            service.create_team_with_owner("new@example.com", name)
        assert db_session.query(Team).count() == 0

    def test_failed_team_write_removes_user(self, service, db_session, monkeypatch):
        """A concurrent signup passes the name check but loses on insert"""
        service.create_team_with_owner("first@example.com", "Initech")
        monkeypatch.setattr(service.team_repo, "get_by_name", lambda name: None)

        with pytest.raises(ConflictException) as exc_info:
            service.create_team_with_owner("second@example.com", "Initech")
        assert exc_info.value.code == ErrorCode.TEAM_EXISTS
        assert service.identity.get_user_by_email("second@example.com") is None
        assert db_session.query(Team).count() == 1


class TestUpdateTeam:
    """Tests for TeamService.update_team"""

    def test_admin_updates_details(self, service, db_session, team):
        updated = service.update_team(
            context_for(db_session, team.admin, team),
            {"address": "1 Main St", "vat_number": "DE123456789"},
        )
        assert updated.address == "1 Main St"
        assert updated.vat_number == "DE123456789"
        assert updated.name == "Acme"

    def test_none_clears_optional_field(self, service, db_session, team):
        context = context_for(db_session, team.owner, team)
        service.update_team(context, {"address": "1 Main St"})
        assert service.update_team(context, {"address": None}).address is None

    def test_member_cannot_update(self, service, db_session, team):
        with pytest.raises(ForbiddenException):
            service.update_team(context_for(db_session, team.member, team), {"name": "Renamed"})

    def test_rename_to_taken_name(self, service, db_session, identity, team):
        service.create_team_with_owner("other@example.com", "Globex")
        with pytest.raises(ConflictException) as exc_info:
            service.update_team(context_for(db_session, team.owner, team), {"name": "GLOBEX"})
        assert exc_info.value.code == ErrorCode.TEAM_EXISTS

    def test_rename_keeps_own_name(self, service, db_session, team):
        updated = service.update_team(context_for(db_session, team.owner, team), {"name": "ACME"})
        assert updated.name == "ACME"


class TestDeleteTeam:
    """Tests for TeamService.delete_team"""

    def test_requires_confirmation(self, service, db_session, team):
        with pytest.raises(ValidationException) as exc_info:
            service.delete_team(context_for(db_session, team.owner, team))
        assert exc_info.value.code == ErrorCode.CONFIRMATION_REQUIRED
        assert db_session.get(Team, team.team.id) is not None

    def test_admin_cannot_delete(self, service, db_session, team):
        with pytest.raises(ForbiddenException):
            service.delete_team(context_for(db_session, team.admin, team), confirm_deletion=True)

    def test_delete_cascades(self, service, db_session, identity, team):
        context = context_for(db_session, team.owner, team)
        InvitationService(db_session, identity).create_invite(context, "pending@example.com")
        team_id = team.team.id

        service.delete_team(context, confirm_deletion=True)

        assert db_session.get(Team, team_id) is None
        assert db_session.query(TeamMembership).filter(TeamMembership.team_id == team_id).count() == 0
        assert db_session.query(Invitation).filter(Invitation.team_id == team_id).count() == 0

    def test_delete_ends_sessions_targeting_members(self, service, db_session, identity, team):
        admin_context = MembershipService(db_session).build_actor_context(team.super_admin.id)
        session = ImpersonationService(db_session, identity).start_impersonation(
            admin_context, team.member.id, "Reproducing a reported permissions bug"
        ).session
        session_id = session.id

        service.delete_team(context_for(db_session, team.owner, team), confirm_deletion=True)

        row = db_session.get(ImpersonationSession, session_id)
        assert row.ended_at is not None
        assert row.end_reason == SessionEndReason.TEAM_DELETED
