"""
Proximity evaluation.

Decides which events (proximity, arrival, delay) have newly become true for
the route's next pending stop. The decision itself is a pure function;
ProximityState remembers what already fired so each kind fires at most once
per stop per route.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Set

from backend.app.core.config import Settings
from backend.app.models.notification_enums import EventKind
from backend.app.schemas.route import Coordinate, Stop
from backend.app.services.geo import distance_meters


@dataclass(frozen=True)
class ProximityThresholds:
    proximity_meters: float = 500.0
    arrival_meters: float = 50.0
    default_leg_duration: Optional[timedelta] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProximityThresholds":
        default_leg = None
        if settings.default_leg_duration_minutes:
            default_leg = timedelta(minutes=settings.default_leg_duration_minutes)
        return cls(
            proximity_meters=settings.proximity_threshold_meters,
            arrival_meters=settings.arrival_radius_meters,
            default_leg_duration=default_leg,
        )


@dataclass(frozen=True)
class Evaluation:
    events: List[EventKind]
    distance_meters: Optional[float]  # None when the stop has no coordinate


def expected_leg_duration(stop: Stop, thresholds: ProximityThresholds) -> Optional[timedelta]:
    if stop.expected_duration_minutes is not None:
        return timedelta(minutes=stop.expected_duration_minutes)
    return thresholds.default_leg_duration


def evaluate(
    position: Coordinate,
    stop: Stop,
    fired: Set[EventKind],
    elapsed: timedelta,
    thresholds: ProximityThresholds,
) -> Evaluation:
    """
    Return the event kinds that newly apply to `stop`.

    `fired` holds the kinds already emitted for this stop on this route;
    those never repeat. Without a stop coordinate only DELAY can fire.
    """
    events: List[EventKind] = []
    distance = None

    if stop.coordinate is not None:
        distance = distance_meters(position, stop.coordinate)
        if distance <= thresholds.proximity_meters and EventKind.PROXIMITY not in fired:
            events.append(EventKind.PROXIMITY)
        if distance <= thresholds.arrival_meters and EventKind.ARRIVAL not in fired:
            events.append(EventKind.ARRIVAL)

    expected = expected_leg_duration(stop, thresholds)
    if expected is not None and elapsed > expected and EventKind.DELAY not in fired:
        events.append(EventKind.DELAY)

    return Evaluation(events=events, distance_meters=distance)


class ProximityState:
    """Per-route memory of fired event kinds, keyed by stop id."""

    def __init__(self):
        self._fired: Dict[str, Set[EventKind]] = {}

    def fired(self, stop_id: str) -> Set[EventKind]:
        return set(self._fired.get(stop_id, ()))

    def record(self, stop_id: str, kinds: Iterable[EventKind]) -> None:
        self._fired.setdefault(stop_id, set()).update(kinds)

    def clear(self) -> None:
        self._fired.clear()

    def to_dict(self) -> Dict[str, List[str]]:
        return {stop_id: sorted(k.value for k in kinds) for stop_id, kinds in self._fired.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, List[str]]) -> "ProximityState":
        state = cls()
        for stop_id, kinds in (data or {}).items():
            state.record(stop_id, (EventKind(k) for k in kinds))
        return state
