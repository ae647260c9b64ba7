"""Database session management with connection pooling"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from loan_engine.config import settings
from loan_engine.domain.exceptions import ConcurrentUpdateError

# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit(db: Session) -> None:
    """
    Commit, translating a version-column mismatch into a domain error.

    Versioned rows (loans, scores, deductions) are updated with
    `WHERE version = <read version>`; zero matched rows means another
    writer got there first.
    """
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ConcurrentUpdateError(str(e)) from e
