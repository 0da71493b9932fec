import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from team_auth.config import settings
from team_auth.core.exceptions import ConflictException, ErrorCode

logger = logging.getLogger(__name__)

_is_sqlite = "sqlite" in settings.DATABASE_URL

# SQLite's default pool takes no sizing arguments
_pool_args = {} if _is_sqlite else {
    "pool_size": settings.DB_POOL_SIZE,
    "max_overflow": settings.DB_MAX_OVERFLOW,
}

# Create SQLAlchemy engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,  # Verify connections before using
    echo=settings.DEBUG,  # Log SQL queries in debug mode
    # SQLite-specific settings
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    **_pool_args,
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """
    FastAPI dependency for database sessions.

    Yields a database session and ensures it's closed after use.

    Usage:
        @app.get("/items")
        def get_items(db: Session = Depends(get_db)):
            return db.query(Item).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Unit of work: commit on success, roll back on any error.

    Constraint violations and optimistic-lock failures (a write based on a
    row another transaction changed first) surface as ConflictException so
    callers can re-read and retry once.

    Usage:
        with atomic(db):
            repo.set_role(membership, TeamRole.ADMIN)
    """
    try:
        yield db
        db.commit()
    except (IntegrityError, StaleDataError) as e:
        db.rollback()
        logger.warning("Write rejected as concurrent modification: %s", e)
        raise ConflictException(
            "The resource was modified concurrently, reload and try again",
            ErrorCode.CONCURRENT_MODIFICATION,
        ) from e
    except Exception:
        db.rollback()
        raise
