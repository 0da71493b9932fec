import pytest
from datetime import timedelta

from team_auth.core.exceptions import ErrorCode, ForbiddenException, NotFoundException, ValidationException
from team_auth.core.security import hash_token
from team_auth.models import Invitation, InvitationStatus, TeamMembership, TeamRole
from team_auth.models.base import utcnow
from team_auth.services.invitation_service import NOT_PENDING, REVOKED, InvitationService
from team_auth.services.membership_service import MembershipService


@pytest.fixture
def service(db_session, identity):
    return InvitationService(db_session, identity)


def context_for(db_session, user, team):
    return MembershipService(db_session).build_actor_context(user.id, team_id=team.team.id)


class TestCreateInvite:
    """Tests for InvitationService.create_invite"""

    def test_invite_stores_only_token_hash(self, service, db_session, outbox, team):
        invitation = service.create_invite(context_for(db_session, team.admin, team), "New.Hire@Example.com")

        assert invitation.status == InvitationStatus.PENDING
        assert invitation.email == "new.hire@example.com"
        assert invitation.role == TeamRole.MEMBER
        assert len(outbox) == 1
        token = outbox[0].token
        assert invitation.token_hash == hash_token(token)
        assert invitation.token_hash != token
        assert outbox[0].metadata["team_id"] == team.team.id
        assert outbox[0].metadata["invited_by"] == team.admin.id

    def test_expires_after_configured_hours(self, service, db_session, team):
        now = utcnow()
        invitation = service.create_invite(context_for(db_session, team.owner, team), "a@example.com", now=now)
        assert invitation.expires_at == now + timedelta(hours=24)

    def test_member_cannot_invite(self, service, db_session, outbox, team):
        with pytest.raises(ForbiddenException) as exc_info:
            service.create_invite(context_for(db_session, team.member, team), "a@example.com")
        assert exc_info.value.code == ErrorCode.ROLE_FORBIDDEN
        assert outbox == []

    def test_owner_cannot_invite_owner(self, service, db_session, team):
        with pytest.raises(ForbiddenException):
            service.create_invite(context_for(db_session, team.owner, team), "a@example.com", TeamRole.OWNER)

    def test_existing_member_rejected(self, service, db_session, team):
        with pytest.raises(ValidationException) as exc_info:
            service.create_invite(context_for(db_session, team.owner, team), "MEMBER@example.com")
        assert exc_info.value.code == ErrorCode.ALREADY_MEMBER

    def test_duplicate_pending_rejected(self, service, db_session, team):
        context = context_for(db_session, team.owner, team)
        service.create_invite(context, "a@example.com")
        with pytest.raises(ValidationException) as exc_info:
            service.create_invite(context, "a@example.com")
        assert exc_info.value.code == ErrorCode.INVITE_ALREADY_PENDING

    def test_expired_pending_can_be_reissued(self, service, db_session, team):
        context = context_for(db_session, team.owner, team)
        old = service.create_invite(context, "a@example.com", now=utcnow() - timedelta(days=2))
        old_id = old.id

        fresh = service.create_invite(context, "a@example.com")

        assert fresh.id != old_id
        assert db_session.get(Invitation, old_id).status == InvitationStatus.REVOKED


class TestAcceptInvite:
    """Tests for InvitationService.accept_invite"""

    def test_round_trip_creates_one_membership(self, service, db_session, identity, outbox, team):
        service.create_invite(context_for(db_session, team.admin, team), "joiner@example.com", TeamRole.ADMIN)
        token = outbox[-1].token
        joiner = identity.create_user("joiner@example.com")

        membership = service.accept_invite(token, joiner)

        assert membership.role == TeamRole.ADMIN
        assert membership.team_id == team.team.id
        rows = db_session.query(TeamMembership).filter(TeamMembership.user_id == joiner.id).all()
        assert len(rows) == 1
        pending = (
            db_session.query(Invitation)
            .filter(Invitation.email == "joiner@example.com", Invitation.status == InvitationStatus.PENDING)
            .count()
        )
        assert pending == 0

    def test_accept_twice_not_pending(self, service, db_session, identity, outbox, team):
        service.create_invite(context_for(db_session, team.owner, team), "joiner@example.com")
        token = outbox[-1].token
        joiner = identity.create_user("joiner@example.com")
        service.accept_invite(token, joiner)

        with pytest.raises(ValidationException) as exc_info:
            service.accept_invite(token, joiner)
        assert exc_info.value.code == ErrorCode.INVITE_NOT_PENDING

    def test_expired_invite(self, service, db_session, identity, outbox, team):
        now = utcnow()
        invitation = service.create_invite(context_for(db_session, team.owner, team), "late@example.com", now=now)
        invite_id = invitation.id
        token = outbox[-1].token
        late = identity.create_user("late@example.com")

        with pytest.raises(ValidationException) as exc_info:
            service.accept_invite(token, late, now=now + timedelta(hours=25))
        assert exc_info.value.code == ErrorCode.INVITE_EXPIRED

        assert db_session.query(TeamMembership).filter(TeamMembership.user_id == late.id).count() == 0
        assert db_session.get(Invitation, invite_id).status == InvitationStatus.REVOKED

    def test_expired_invite_stays_expired_on_retry(self, service, db_session, identity, outbox, team):
        context = context_for(db_session, team.owner, team)
        service.create_invite(context, "late@example.com", now=utcnow() - timedelta(days=2))
        token = outbox[-1].token
        late = identity.create_user("late@example.com")

        codes = []
        for _ in range(2):
            with pytest.raises(ValidationException) as exc_info:
                service.accept_invite(token, late)
            codes.append(exc_info.value.code)

        assert codes == [ErrorCode.INVITE_EXPIRED, ErrorCode.INVITE_EXPIRED]

    def test_reissued_invite_old_token_expired(self, service, db_session, identity, outbox, team):
        context = context_for(db_session, team.owner, team)
        service.create_invite(context, "late@example.com", now=utcnow() - timedelta(days=2))
        old_token = outbox[-1].token
        service.create_invite(context, "late@example.com")

        with pytest.raises(ValidationException) as exc_info:
            service.accept_invite(old_token, identity.create_user("late@example.com"))
        assert exc_info.value.code == ErrorCode.INVITE_EXPIRED

    def test_email_mismatch(self, service, db_session, identity, outbox, team):
        service.create_invite(context_for(db_session, team.owner, team), "intended@example.com")
        token = outbox[-1].token
        intruder = identity.create_user("intruder@example.com")

        with pytest.raises(ValidationException) as exc_info:
            service.accept_invite(token, intruder)
        assert exc_info.value.code == ErrorCode.EMAIL_MISMATCH

    def test_email_match_is_case_insensitive(self, service, db_session, identity, outbox, team):
        service.create_invite(context_for(db_session, team.owner, team), "Casey@Example.com")
        token = outbox[-1].token
        casey = identity.create_user("casey@example.com")
        assert service.accept_invite(token, casey).role == TeamRole.MEMBER

    def test_unknown_token(self, service, identity, team):
        someone = identity.create_user("someone@example.com")
        with pytest.raises(NotFoundException) as exc_info:
            service.accept_invite("not-a-real-token", someone)
        assert exc_info.value.code == ErrorCode.INVITE_NOT_FOUND

    def test_existing_member_cannot_accept(self, service, db_session, identity, outbox, team):
        service.create_invite(context_for(db_session, team.owner, team), "busy@example.com")
        token = outbox[-1].token
        busy = identity.create_user("busy@example.com")
        MembershipService(db_session).add_member(team.team.id, busy.id, TeamRole.MEMBER)
        db_session.commit()

        with pytest.raises(ValidationException) as exc_info:
            service.accept_invite(token, busy)
        assert exc_info.value.code == ErrorCode.ALREADY_MEMBER

    def test_owner_invite_demotes_existing_owner(self, service, db_session, identity, outbox, team):
        context = context_for(db_session, team.super_admin, team)
        service.create_invite(context, "heir@example.com", TeamRole.OWNER)
        token = outbox[-1].token
        heir = identity.create_user("heir@example.com")

        membership = service.accept_invite(token, heir)

        assert membership.role == TeamRole.OWNER
        members = MembershipService(db_session)
        assert members.get_role(team.team.id, team.owner.id) == TeamRole.ADMIN


class TestRevokeInvite:
    """Tests for InvitationService.revoke_invite"""

    def test_revoke_is_idempotent(self, service, db_session, team):
        context = context_for(db_session, team.owner, team)
        invitation = service.create_invite(context, "a@example.com")

        assert service.revoke_invite(context, invitation.id) == REVOKED
        assert service.revoke_invite(context, invitation.id) == NOT_PENDING

    def test_unknown_invite_is_not_pending(self, service, db_session, team):
        context = context_for(db_session, team.owner, team)
        assert service.revoke_invite(context, "does-not-exist") == NOT_PENDING

    def test_admin_cannot_revoke_admin_invite(self, service, db_session, team):
        owner_context = context_for(db_session, team.owner, team)
        invitation = service.create_invite(owner_context, "a@example.com", TeamRole.ADMIN)

        with pytest.raises(ForbiddenException):
            service.revoke_invite(context_for(db_session, team.admin, team), invitation.id)

    def test_revoked_invite_cannot_be_accepted(self, service, db_session, identity, outbox, team):
        context = context_for(db_session, team.owner, team)
        invitation = service.create_invite(context, "a@example.com")
        token = outbox[-1].token
        service.revoke_invite(context, invitation.id)

        with pytest.raises(ValidationException) as exc_info:
            service.accept_invite(token, identity.create_user("a@example.com"))
        assert exc_info.value.code == ErrorCode.INVITE_NOT_PENDING


def test_list_pending_excludes_expired(service, db_session, team):
    context = context_for(db_session, team.owner, team)
    service.create_invite(context, "stale@example.com", now=utcnow() - timedelta(days=3))
    service.create_invite(context, "fresh@example.com")

    pending = service.list_pending_invites(context)
    assert [i.email for i in pending] == ["fresh@example.com"]


def test_member_cannot_list_invites(service, db_session, team):
    with pytest.raises(ForbiddenException):
        service.list_pending_invites(context_for(db_session, team.member, team))
