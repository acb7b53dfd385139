"""
Route tracking schemas.

The Route aggregate and its stops, plus the request/response shapes of the
driver and guardian endpoints.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional, List

from backend.app.core.timeutils import as_utc
from backend.app.models.route_enums import RouteDirection, StopKind, StopStatus


class Coordinate(BaseModel):
    """WGS84 position in degrees."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class LocationFix(Coordinate):
    """A driver position with the time it was recorded."""
    recorded_at: datetime
    accuracy_meters: Optional[float] = Field(None, gt=0)

    @field_validator("recorded_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class StopCreate(BaseModel):
    """One planned pickup/drop-off point as supplied by the driver app."""
    id: str = Field(..., min_length=1)
    label: str
    kind: StopKind = StopKind.STUDENT
    address: Optional[str] = None
    coordinate: Optional[Coordinate] = None  # Address-only stops have none yet
    guardian_ids: List[str] = Field(default_factory=list)
    expected_duration_minutes: Optional[float] = Field(None, gt=0)  # Leg estimate from a routing provider


class Stop(StopCreate):
    status: StopStatus = StopStatus.PENDING
    status_updated_at: Optional[datetime] = None


class Route(BaseModel):
    """
    One van trip.

    Stop order is fixed at creation. Only RouteStateManager mutates a Route;
    everything it hands out is a deep copy.
    """
    id: str
    driver_id: str
    driver_name: str
    direction: RouteDirection
    stops: List[Stop]
    current_location: Optional[LocationFix] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    is_active: bool = True

    def find_stop(self, stop_id: str) -> Optional[Stop]:
        for stop in self.stops:
            if stop.id == stop_id:
                return stop
        return None

    def next_pending_stop(self) -> Optional[Stop]:
        for stop in self.stops:
            if stop.status == StopStatus.PENDING:
                return stop
        return None

    def stops_for_guardian(self, guardian_id: str) -> List[Stop]:
        return [stop for stop in self.stops if guardian_id in stop.guardian_ids]

    def all_stops_completed(self) -> bool:
        return bool(self.stops) and all(s.status == StopStatus.DROPPED_OFF for s in self.stops)


# Request / response shapes

class RouteStartRequest(BaseModel):
    driver_id: str
    driver_name: str
    direction: RouteDirection
    stops: List[StopCreate] = Field(..., min_length=1)

    @field_validator("stops")
    @classmethod
    def _unique_ids(cls, stops: List[StopCreate]) -> List[StopCreate]:
        ids = [s.id for s in stops]
        if len(ids) != len(set(ids)):
            raise ValueError("stop ids must be unique within a route")
        return stops


class LocationUpdateRequest(Coordinate):
    recorded_at: Optional[datetime] = None  # Defaults to server time
    accuracy_meters: Optional[float] = Field(None, gt=0)


class StopAdvanceRequest(BaseModel):
    status: StopStatus


class LocationUpdateResponse(BaseModel):
    tracked: bool
    route: Optional[Route] = None


class RouteEndResponse(BaseModel):
    ended: bool


class GuardianRouteInfo(BaseModel):
    """Read-only projection of the active route for one guardian."""
    has_active_route: bool
    route_id: Optional[str] = None
    driver_name: Optional[str] = None
    direction: Optional[RouteDirection] = None
    driver_location: Optional[LocationFix] = None
    next_stop: Optional[Stop] = None
    distance_meters: Optional[float] = None
    estimated_arrival: Optional[datetime] = None
