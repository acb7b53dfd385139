"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    driver_routes, guardian_tracking, notifications, simulator
)

router = APIRouter()

# Driver side
router.include_router(driver_routes.router)

# Guardian side
router.include_router(guardian_tracking.router)
router.include_router(notifications.router)

# Demo movement
router.include_router(simulator.router)

# Websocket routes are mounted at the application root
ws_router = guardian_tracking.ws_router
