"""Engine and session factory, created lazily from settings."""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings


def _engine_kwargs(database_url: str) -> dict[str, object]:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


@lru_cache
def get_engine() -> Engine:
    """Return the process-wide engine."""

    database_url = get_settings().database_url
    return create_engine(database_url, future=True, **_engine_kwargs(database_url))


@lru_cache
def get_sessionmaker() -> sessionmaker[Session]:
    """Return the session factory bound to the process-wide engine."""

    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, future=True)
