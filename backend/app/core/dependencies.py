"""
Engine dependencies for FastAPI.

The tracking engine is built once in the application lifespan and kept on
app.state; these dependencies hand its parts to the endpoints.
"""

from fastapi import Depends, Request

from backend.app.services.engine import TrackingEngine
from backend.app.services.movement_simulator import MovementSimulator
from backend.app.services.notification_service import NotificationService
from backend.app.services.route_tracking import RouteStateManager


def get_engine(request: Request) -> TrackingEngine:
    return request.app.state.engine


def get_route_manager(engine: TrackingEngine = Depends(get_engine)) -> RouteStateManager:
    return engine.routes


def get_notification_service(engine: TrackingEngine = Depends(get_engine)) -> NotificationService:
    return engine.notifications


def get_simulator(engine: TrackingEngine = Depends(get_engine)) -> MovementSimulator:
    return engine.simulator
