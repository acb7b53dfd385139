import math
from datetime import datetime, timedelta

from backend.app.schemas.route import Coordinate

EARTH_RADIUS_METERS = 6_371_000


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """
    Calculate distance between two points using Haversine formula
    Returns distance in meters
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [a.latitude, a.longitude, b.latitude, b.longitude])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, h)))

    return EARTH_RADIUS_METERS * c


def interpolate(a: Coordinate, b: Coordinate, fraction: float) -> Coordinate:
    """Linear interpolation between two coordinates, fraction in [0, 1]."""
    return Coordinate(
        latitude=a.latitude + (b.latitude - a.latitude) * fraction,
        longitude=a.longitude + (b.longitude - a.longitude) * fraction,
    )


def estimate_arrival(distance: float, average_speed_kmh: float, from_time: datetime) -> datetime:
    """Project an arrival time assuming a constant average speed."""
    meters_per_second = average_speed_kmh * 1000 / 3600
    return from_time + timedelta(seconds=distance / meters_per_second)
