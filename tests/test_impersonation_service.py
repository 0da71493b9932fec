import logging

import pytest
from datetime import timedelta

from team_auth.core.exceptions import (
    DependencyException,
    ErrorCode,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from team_auth.identity.local_provider import LocalIdentityProvider
from team_auth.identity.provider import IdentityProviderError
from team_auth.models import ImpersonationSession, SessionEndReason
from team_auth.models.base import utcnow
from team_auth.services.audit import session_audit_events
from team_auth.services.impersonation_service import ImpersonationService
from team_auth.services.membership_service import MembershipService
from tests.conftest import seed_team

REASON = "Customer ticket #4821: cannot see invoices"


class UnavailableIdentityProvider(LocalIdentityProvider):
    """Local provider whose session issuance always fails"""

    def __init__(self, db):
        super().__init__(db)
        self.issue_attempts = 0

    def issue_session_for(self, user, metadata, expires_at=None):
        self.issue_attempts += 1
        raise IdentityProviderError("identity provider timed out")


@pytest.fixture
def service(db_session, identity):
    return ImpersonationService(db_session, identity)


def platform_context(db_session, user):
    return MembershipService(db_session).build_actor_context(user.id)


class TestStartImpersonation:
    """Tests for ImpersonationService.start_impersonation"""

    def test_start_issues_tagged_credential(self, service, db_session, team):
        now = utcnow()
        result = service.start_impersonation(
            platform_context(db_session, team.super_admin), team.member.id, REASON, now=now
        )

        session = result.session
        assert session.admin_user_id == team.super_admin.id
        assert session.target_user_id == team.member.id
        assert session.expires_at == now + timedelta(minutes=30)
        assert session.ended_at is None
        assert result.impersonated.user_id == team.member.id
        assert result.impersonated.metadata["acting_as"] is True
        assert result.impersonated.metadata["original_admin_id"] == team.super_admin.id
        assert result.impersonated.metadata["session_id"] == session.id
        assert result.impersonated.expires_at == session.expires_at

    def test_original_credential_returned(self, service, db_session, identity, team):
        original = identity.issue_session_for(team.super_admin, {})
        result = service.start_impersonation(
            platform_context(db_session, team.super_admin), team.member.id, REASON, original_credential=original
        )
        assert result.original == original

    @pytest.mark.parametrize("actor", ["owner", "admin", "member"])
    def test_non_super_admin_unauthorized(self, service, db_session, team, actor):
        with pytest.raises(ForbiddenException) as exc_info:
            service.start_impersonation(platform_context(db_session, getattr(team, actor)), team.member.id, REASON)
        assert exc_info.value.code == ErrorCode.IMPERSONATION_UNAUTHORIZED

    def test_self_impersonation(self, service, db_session, team):
        with pytest.raises(ForbiddenException) as exc_info:
            service.start_impersonation(platform_context(db_session, team.super_admin), team.super_admin.id, REASON)
        assert exc_info.value.code == ErrorCode.SELF_IMPERSONATION

    def test_unknown_target(self, service, db_session, team):
        with pytest.raises(NotFoundException) as exc_info:
            service.start_impersonation(platform_context(db_session, team.super_admin), "nobody", REASON)
        assert exc_info.value.code == ErrorCode.USER_NOT_FOUND

    def test_other_super_admin_privileged(self, service, db_session, identity, team):
        other = seed_team(db_session, identity, name="Globex", prefix="globex-")
        with pytest.raises(ForbiddenException) as exc_info:
            service.start_impersonation(platform_context(db_session, team.super_admin), other.super_admin.id, REASON)
        assert exc_info.value.code == ErrorCode.TARGET_IS_PRIVILEGED

    @pytest.mark.parametrize("reason", ["", "   ", "too short", "  padded   "])
    def test_reason_required(self, service, db_session, team, reason):
        with pytest.raises(ValidationException) as exc_info:
            service.start_impersonation(platform_context(db_session, team.super_admin), team.member.id, reason)
        assert exc_info.value.code == ErrorCode.REASON_REQUIRED
        assert db_session.query(ImpersonationSession).count() == 0

    def test_new_session_supersedes_previous(self, service, db_session, team):
        context = platform_context(db_session, team.super_admin)
        first = service.start_impersonation(context, team.member.id, REASON).session
        first_id = first.id

        second = service.start_impersonation(context, team.admin.id, REASON).session

        first = db_session.get(ImpersonationSession, first_id)
        assert first.ended_at is not None
        assert first.end_reason == SessionEndReason.SUPERSEDED
        assert service.is_session_active(second.id)

    def test_lapsed_session_not_marked_superseded(self, service, db_session, team):
        now = utcnow()
        context = platform_context(db_session, team.super_admin)
        first_id = service.start_impersonation(context, team.member.id, REASON, now=now).session.id

        service.start_impersonation(context, team.admin.id, REASON, now=now + timedelta(hours=1))

        first = db_session.get(ImpersonationSession, first_id)
        assert first.end_reason == SessionEndReason.EXPIRED
        assert first.ended_at == first.expires_at

    def test_short_reason_audited_as_denial(self, service, db_session, team, caplog):
        caplog.set_level(logging.INFO, logger="team_auth.audit")

        with pytest.raises(ValidationException):
            service.start_impersonation(platform_context(db_session, team.super_admin), team.member.id, "short")

        events = [r.audit for r in caplog.records if r.name == "team_auth.audit"]
        assert [(e["operation"], e["result"]) for e in events] == [("impersonate", "denied")]
        assert events[0]["details"]["reason"] == "REASON_REQUIRED"

    def test_issuance_failure_closes_session(self, db_session, team):
        identity = UnavailableIdentityProvider(db_session)
        service = ImpersonationService(db_session, identity)

        with pytest.raises(DependencyException) as exc_info:
            service.start_impersonation(platform_context(db_session, team.super_admin), team.member.id, REASON)
        assert exc_info.value.code == ErrorCode.IDP_UNAVAILABLE
        assert identity.issue_attempts == 3

        session = db_session.query(ImpersonationSession).one()
        assert session.ended_at is not None
        assert session.end_reason == SessionEndReason.ISSUANCE_FAILED
        assert not service.is_session_active(session.id)


class TestSessionLifecycle:
    """Tests for expiry, stop and sweep"""

    def test_inactive_after_ttl_without_sweep(self, service, db_session, team):
        now = utcnow()
        session = service.start_impersonation(
            platform_context(db_session, team.super_admin), team.member.id, REASON, now=now
        ).session

        assert service.is_session_active(session.id, now=now + timedelta(minutes=29))
        assert not service.is_session_active(session.id, now=now + timedelta(minutes=31))
        assert db_session.get(ImpersonationSession, session.id).ended_at is None

    def test_stop_is_idempotent(self, service, db_session, team):
        context = platform_context(db_session, team.super_admin)
        session = service.start_impersonation(context, team.member.id, REASON).session
        session_id = session.id

        first = service.stop_impersonation(context, session_id=session_id)
        ended_at = db_session.get(ImpersonationSession, session_id).ended_at
        second = service.stop_impersonation(context, session_id=session_id)

        assert first.already_ended is False
        assert first.ended_count == 1
        assert second.already_ended is True
        row = db_session.get(ImpersonationSession, session_id)
        assert row.ended_at == ended_at
        assert row.end_reason == SessionEndReason.STOPPED

    def test_stop_as_impersonated_user(self, service, db_session, team):
        admin_context = platform_context(db_session, team.super_admin)
        session = service.start_impersonation(admin_context, team.member.id, REASON).session
        session_id = session.id

        impersonated = MembershipService(db_session).build_actor_context(
            team.member.id, impersonator_id=team.super_admin.id, session_id=session_id
        )
        result = service.stop_impersonation(impersonated)

        assert result.ended_count == 1
        assert not service.is_session_active(session_id)

    def test_stop_unrelated_session_not_found(self, service, db_session, team):
        session = service.start_impersonation(
            platform_context(db_session, team.super_admin), team.member.id, REASON
        ).session
        with pytest.raises(NotFoundException) as exc_info:
            service.stop_impersonation(platform_context(db_session, team.owner), session_id=session.id)
        assert exc_info.value.code == ErrorCode.SESSION_NOT_FOUND

    def test_stop_after_expiry_records_expiry(self, service, db_session, team):
        now = utcnow()
        context = platform_context(db_session, team.super_admin)
        session = service.start_impersonation(context, team.member.id, REASON, now=now).session
        session_id = session.id

        result = service.stop_impersonation(context, session_id=session_id, now=now + timedelta(hours=1))

        assert result.already_ended is True
        row = db_session.get(ImpersonationSession, session_id)
        assert row.end_reason == SessionEndReason.EXPIRED
        assert row.ended_at == row.expires_at

    def test_sweep_uses_expiry_time(self, service, db_session, team):
        now = utcnow()
        session = service.start_impersonation(
            platform_context(db_session, team.super_admin), team.member.id, REASON, now=now
        ).session
        session_id = session.id

        assert service.sweep_expired_sessions(now=now + timedelta(minutes=10)) == 0
        assert service.sweep_expired_sessions(now=now + timedelta(minutes=45)) == 1
        assert service.sweep_expired_sessions(now=now + timedelta(minutes=50)) == 0

        row = db_session.get(ImpersonationSession, session_id)
        assert row.ended_at == row.expires_at
        assert row.end_reason == SessionEndReason.EXPIRED


class TestSessionAudit:
    """Tests for session history and derived audit events"""

    def test_list_sessions_own_only(self, service, db_session, team):
        context = platform_context(db_session, team.super_admin)
        service.start_impersonation(context, team.member.id, REASON)

        sessions = service.list_sessions(context)
        assert len(sessions) == 1
        assert sessions[0].target_user_id == team.member.id

    def test_list_sessions_requires_super_admin(self, service, db_session, team):
        with pytest.raises(ForbiddenException):
            service.list_sessions(platform_context(db_session, team.owner))

    def test_events_derived_from_row(self, service, db_session, team):
        context = platform_context(db_session, team.super_admin)
        session = service.start_impersonation(context, team.member.id, REASON).session
        service.stop_impersonation(context, session_id=session.id)

        events = session_audit_events(db_session.get(ImpersonationSession, session.id))

        assert [e.operation for e in events] == ["impersonation_start", "impersonation_stop"]
        assert events[0].actor == team.super_admin.id
        assert events[0].target == team.member.id
        assert events[0].details["reason"] == REASON
        assert events[1].details["end_reason"] == "stopped"
