"""Health check endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.db.dependencies import get_db_session

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """Liveness: the process is serving requests."""

    return {"status": "ok", "service": get_settings().app_name}


@router.get("/health/ready")
def readiness(db: Session = Depends(get_db_session)) -> dict[str, str]:
    """Readiness: the database answers a trivial query."""

    db.execute(text("SELECT 1"))
    return {"status": "ready"}
