"""Router registrations."""

from fastapi import APIRouter

from automation_engine.api.routers import audit, events, health, notifications, rules


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router, tags=["health"])
    router.include_router(events.router, prefix="/api/v1/events", tags=["events"])
    router.include_router(rules.router, prefix="/api/v1/rules", tags=["rules"])
    router.include_router(notifications.router, prefix="/api/v1/notifications", tags=["notifications"])
    router.include_router(audit.router, prefix="/api/v1/audit", tags=["audit"])
    return router
