"""API router package."""

from fastapi import APIRouter

from teamhub.api.v1 import auth, health, profiles, tasks, teams, websocket

router = APIRouter()

# Include all API routers
router.include_router(health.router, tags=["Health"])
router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(profiles.router, prefix="/profiles", tags=["Profiles"])
router.include_router(teams.router, prefix="/teams", tags=["Teams"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(websocket.router, tags=["WebSocket"])
