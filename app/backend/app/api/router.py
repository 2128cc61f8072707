"""Top-level API router."""

from fastapi import APIRouter

from app.api.routes.allocations import router as allocations_router
from app.api.routes.audit import router as audit_router
from app.api.routes.health import router as health_router
from app.api.routes.me import router as me_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(me_router)
api_router.include_router(allocations_router)
api_router.include_router(audit_router)
