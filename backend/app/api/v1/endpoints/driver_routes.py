"""
Driver Route API Endpoints.

The driver starts a trip, streams GPS fixes, marks students as picked up or
dropped off, and ends the trip.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from backend.app.core.dependencies import get_route_manager
from backend.app.core.exceptions import NoActiveRouteError
from backend.app.schemas.route import (
    LocationUpdateRequest,
    LocationUpdateResponse,
    Route,
    RouteEndResponse,
    RouteStartRequest,
    StopAdvanceRequest,
)
from backend.app.services.route_tracking import RouteStateManager

router = APIRouter(prefix="/driver/routes", tags=["Driver - Routes"])


@router.post("/start", response_model=Route, status_code=status.HTTP_201_CREATED)
async def start_route(
    req: RouteStartRequest,
    manager: RouteStateManager = Depends(get_route_manager)
):
    """
    Start a trip.

    Any route still active is ended first; every stop starts as pending.
    """
    return await manager.start_route(req.driver_id, req.driver_name, req.direction, req.stops)


@router.post("/location", response_model=LocationUpdateResponse)
async def update_location(
    req: LocationUpdateRequest,
    manager: RouteStateManager = Depends(get_route_manager)
):
    """Record a driver GPS fix and run proximity evaluation."""
    route = await manager.update_location(req, timestamp=req.recorded_at, accuracy_meters=req.accuracy_meters)
    if route is None:
        raise NoActiveRouteError("No active route to track")
    return LocationUpdateResponse(tracked=True, route=route)


@router.patch("/stops/{stop_id}", response_model=Route)
async def advance_stop(
    req: StopAdvanceRequest,
    stop_id: str = Path(..., description="Stop ID"),
    strict: bool = Query(False, description="Only allow one step at a time"),
    manager: RouteStateManager = Depends(get_route_manager)
):
    """
    Update a stop status (picked_up / dropped_off).

    Returns 409 if the change would move the stop backwards.
    """
    return await manager.advance_stop(stop_id, req.status, strict=strict)


@router.post("/end", response_model=RouteEndResponse)
async def end_route(manager: RouteStateManager = Depends(get_route_manager)):
    """End the active trip. ended=false when nothing was running."""
    return RouteEndResponse(ended=await manager.end_route())


@router.get("/active", response_model=Optional[Route])
async def get_active_route(manager: RouteStateManager = Depends(get_route_manager)):
    """Current route snapshot, or null."""
    return manager.get_active_route()
