import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-team-auth")

import pytest
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from jose import jwt

from team_auth.database import atomic, get_db
from team_auth.config import settings
from team_auth.dependencies import get_identity_provider
from team_auth.identity.local_provider import LocalIdentityProvider, OutboxMessage
from team_auth.identity.provider import UserRecord
# Import all model classes to ensure they're registered with SQLAlchemy
from team_auth.models import Base, Team, TeamRole
from team_auth.repositories.team_membership_repository import TeamMembershipRepository
from team_auth.repositories.team_repository import TeamRepository
# Import FastAPI app AFTER model imports
from team_auth.main import app

# Test database (SQLite in-memory for speed)
# Use StaticPool to ensure all connections share the same in-memory database
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    """Identity provider retries run without sleeping in tests"""
    monkeypatch.setattr(settings, "IDP_RETRY_BACKOFF_SECONDS", 0.0)


@pytest.fixture(scope="function")
def db_session():
    """Create fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def outbox() -> list[OutboxMessage]:
    """One-time links 'sent' by the identity provider"""
    return []


@pytest.fixture
def identity(db_session, outbox):
    return LocalIdentityProvider(db_session, outbox=outbox)


@pytest.fixture(scope="function")
def client(db_session, identity):
    """FastAPI test client with test database and local identity provider"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_provider] = lambda: identity
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def create_test_token(user_id: str = "test-user-123", expired: bool = False, **claims) -> str:
    """
    Generate valid JWT token for testing.

    Args:
        user_id: User ID to embed in 'sub' claim
        expired: If True, create expired token
        **claims: Extra claims (e.g. session_id, original_admin_id)

    Returns:
        Encoded JWT token
    """
    if expired:
        exp = datetime.now(UTC) - timedelta(minutes=5)
    else:
        exp = datetime.now(UTC) + timedelta(minutes=15)

    payload = {"sub": user_id, "exp": exp, "iat": datetime.now(UTC), **claims}

    token = jwt.encode(payload, settings.SECRET_KEY, algorithm="HS256")
    return token


def headers_for(user: UserRecord | str, **claims) -> dict:
    """Authorization headers for a user record or id"""
    user_id = user if isinstance(user, str) else user.id
    return {"Authorization": f"Bearer {create_test_token(user_id=user_id, **claims)}"}


@dataclass
class TeamFixture:
    team: Team
    owner: UserRecord
    admin: UserRecord
    member: UserRecord
    super_admin: UserRecord


def seed_team(db, identity, name: str = "Acme", prefix: str = "") -> TeamFixture:
    """
    Create a team with an owner, an admin and a member, plus a platform
    super_admin attached to a separate team.
    """
    owner = identity.create_user(f"{prefix}owner@example.com", full_name="Olivia Owner")
    admin = identity.create_user(f"{prefix}admin@example.com", full_name="Adam Admin")
    member = identity.create_user(f"{prefix}member@example.com", full_name="Mia Member")
    super_admin = identity.create_user(f"{prefix}support@example.com", full_name="Sam Support")

    team_repo = TeamRepository(db)
    membership_repo = TeamMembershipRepository(db)
    with atomic(db):
        team = team_repo.create(Team(name=name))
        platform = team_repo.create(Team(name=f"{name} Platform"))
        membership_repo.create(team.id, owner.id, TeamRole.OWNER)
        membership_repo.create(team.id, admin.id, TeamRole.ADMIN)
        membership_repo.create(team.id, member.id, TeamRole.MEMBER)
        membership_repo.create_super_admin(platform.id, super_admin.id)

    return TeamFixture(team=team, owner=owner, admin=admin, member=member, super_admin=super_admin)


@pytest.fixture
def team(db_session, identity) -> TeamFixture:
    return seed_team(db_session, identity)
