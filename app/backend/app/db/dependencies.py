"""Database dependencies for FastAPI endpoints."""

from collections.abc import Generator

from sqlalchemy.orm import Session

from app.db.session import get_sessionmaker


def get_db_session() -> Generator[Session, None, None]:
    """Yield a request-scoped SQLAlchemy session.

    Services own the unit of work: they commit or roll back explicitly.
    """

    session = get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()
