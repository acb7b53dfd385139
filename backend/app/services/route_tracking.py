"""
Route State Manager.

Single owner of the active route: applies driver location updates and stop
status changes, runs proximity evaluation, hands qualifying events to the
notification service and publishes route snapshots on the route channel.

Mutations are serialized by an asyncio.Lock. end_route() deliberately does
not wait for that lock so that ending a trip takes effect at once; an update
already in flight for the ended route notices the route is gone and
publishes nothing. start_route() ends the previous route while holding the
lock, so overlapping starts always see a None between two routes.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Union

from backend.app.core.config import Settings
from backend.app.core.exceptions import (
    InvalidTransitionError, NoActiveRouteError, PersistenceError, StopNotFoundError
)
from backend.app.core.timeutils import as_utc, utcnow
from backend.app.models.notification_enums import NotificationType
from backend.app.models.route_enums import RouteDirection, StopStatus
from backend.app.schemas.route import (
    Coordinate, GuardianRouteInfo, LocationFix, Route, Stop, StopCreate
)
from backend.app.services.dispatcher import Dispatcher
from backend.app.services.geo import distance_meters, estimate_arrival
from backend.app.services.kv_store import KeyValueStore
from backend.app.services.notification_service import NotificationService, compose_event
from backend.app.services.proximity import ProximityState, ProximityThresholds, evaluate

logger = logging.getLogger("van_tracking.routes")

ACTIVE_ROUTE_KEY = "route:active"
PROXIMITY_STATE_KEY = "route:proximity"

STATUS_NOTIFICATIONS = {
    StopStatus.PICKED_UP: NotificationType.PICKED_UP,
    StopStatus.DROPPED_OFF: NotificationType.DROPPED_OFF,
}


class RouteStateManager:

    def __init__(
        self,
        store: KeyValueStore,
        dispatcher: Dispatcher,
        notifications: NotificationService,
        settings: Settings,
        thresholds: Optional[ProximityThresholds] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.notifications = notifications
        self.thresholds = thresholds or ProximityThresholds.from_settings(settings)
        self.average_speed_kmh = settings.average_speed_kmh
        self.route_max_age = timedelta(hours=settings.route_max_age_hours)
        self.clock = clock
        self._route: Optional[Route] = None
        self._proximity = ProximityState()
        self._lock = asyncio.Lock()

    # --- internal helpers ---

    def _is_current(self, route: Route) -> bool:
        return self._route is route and route.is_active

    async def _persist(self, route: Route) -> None:
        try:
            await self.store.set(ACTIVE_ROUTE_KEY, route.model_dump(mode="json"))
            await self.store.set(PROXIMITY_STATE_KEY, self._proximity.to_dict())
        except PersistenceError as e:
            logger.warning("Route not persisted", extra={"route_id": route.id, "error": str(e)})
            return
        if not self._is_current(route):
            # end_route() ran while this write was pending
            await self._forget(route)

    async def _forget(self, route: Route) -> None:
        try:
            await self.store.delete(ACTIVE_ROUTE_KEY)
            await self.store.delete(PROXIMITY_STATE_KEY)
        except PersistenceError as e:
            logger.warning("Ended route not removed from store", extra={"route_id": route.id, "error": str(e)})

    async def _notify_guardians(self, stop: Stop, event) -> None:
        for guardian_id in stop.guardian_ids:
            await self.notifications.notify(guardian_id, event)

    # --- public API ---

    async def start_route(
        self,
        driver_id: str,
        driver_name: str,
        direction: Union[RouteDirection, str],
        stops: Iterable[Union[StopCreate, dict]],
    ) -> Route:
        """Start a new trip, ending any route that is still active."""
        direction = RouteDirection(direction)
        new_stops = [
            Stop(
                **StopCreate.model_validate(stop).model_dump(exclude={"status", "status_updated_at"}),
                status=StopStatus.PENDING,
            )
            for stop in stops
        ]

        async with self._lock:
            previous = self._route
            if previous is not None:
                logger.info("Active route replaced by new trip", extra={"route_id": previous.id})
                await self._end(previous)

            route = Route(
                id=uuid.uuid4().hex,
                driver_id=driver_id,
                driver_name=driver_name,
                direction=direction,
                stops=new_stops,
                start_time=self.clock(),
                is_active=True,
            )
            self._route = route
            self._proximity.clear()
            await self._persist(route)
            snapshot = route.model_copy(deep=True)

            logger.info(
                "Route started",
                extra={"route_id": route.id, "driver_id": driver_id, "direction": route.direction.value,
                       "stops": len(route.stops)},
            )
            # Published under the lock: an overlapping start must not end this
            # route before it has been announced
            if self._is_current(route):
                await self.dispatcher.publish(snapshot)
        return snapshot

    async def update_location(
        self,
        coordinate: Coordinate,
        timestamp: Optional[datetime] = None,
        accuracy_meters: Optional[float] = None,
    ) -> Optional[Route]:
        """
        Record the driver position and evaluate the next pending stop.

        Returns None (and does nothing) when no route is active or the route
        ended while this update was being processed.
        """
        async with self._lock:
            route = self._route
            if route is None:
                logger.debug("Location ignored, no active route")
                return None

            fix = LocationFix(
                latitude=coordinate.latitude,
                longitude=coordinate.longitude,
                recorded_at=as_utc(timestamp) if timestamp else self.clock(),
                accuracy_meters=accuracy_meters,
            )
            route.current_location = fix

            stop = route.next_pending_stop()
            events = []
            distance = None
            if stop is not None:
                evaluation = evaluate(
                    fix,
                    stop,
                    self._proximity.fired(stop.id),
                    fix.recorded_at - route.start_time,
                    self.thresholds,
                )
                events = evaluation.events
                distance = evaluation.distance_meters
                if events:
                    # Record before notifying so a replayed update cannot fire again
                    self._proximity.record(stop.id, events)

            await self._persist(route)
            snapshot = route.model_copy(deep=True)

        if not self._is_current(route):
            logger.info("Location update discarded, route ended meanwhile", extra={"route_id": route.id})
            return None

        if events:
            eta = None
            if distance is not None:
                eta = estimate_arrival(distance, self.average_speed_kmh, fix.recorded_at)
            for kind in events:
                if not self._is_current(route):
                    return None
                logger.info(
                    "Proximity event",
                    extra={"route_id": route.id, "stop_id": stop.id, "event": kind.value, "distance_m": distance},
                )
                event = compose_event(NotificationType(kind.value), snapshot, stop, fix.recorded_at, distance, eta)
                await self._notify_guardians(stop, event)

        if not self._is_current(route):
            return None
        await self.dispatcher.publish(snapshot)
        return snapshot

    async def advance_stop(
        self, stop_id: str, new_status: Union[StopStatus, str], strict: bool = False
    ) -> Route:
        """
        Move a stop forward (pending -> picked_up -> dropped_off).

        Stops advance independently of each other. With strict=True the
        status may only move one step at a time. Raises InvalidTransitionError
        on regressions, leaving the route untouched.
        """
        new_status = StopStatus(new_status)
        async with self._lock:
            route = self._route
            if route is None:
                raise NoActiveRouteError()
            stop = route.find_stop(stop_id)
            if stop is None:
                raise StopNotFoundError(stop_id)

            current = stop.status
            if new_status.rank <= current.rank or (strict and new_status.rank != current.rank + 1):
                logger.warning(
                    "Invalid stop transition rejected",
                    extra={"route_id": route.id, "stop_id": stop_id, "from": current.value, "to": new_status.value},
                )
                raise InvalidTransitionError(stop_id, current.value, new_status.value)

            stop.status = new_status
            stop.status_updated_at = self.clock()
            completed = route.all_stops_completed()
            await self._persist(route)
            snapshot = route.model_copy(deep=True)
            stop_snapshot = snapshot.find_stop(stop_id)

        logger.info(
            "Stop advanced",
            extra={"route_id": route.id, "stop_id": stop_id, "from": current.value, "to": new_status.value},
        )
        if not self._is_current(route):
            return snapshot

        event = compose_event(STATUS_NOTIFICATIONS[new_status], snapshot, stop_snapshot, stop_snapshot.status_updated_at)
        await self._notify_guardians(stop_snapshot, event)

        if self._is_current(route):
            await self.dispatcher.publish(snapshot)
        if completed and self._is_current(route):
            logger.info("All stops completed, ending route", extra={"route_id": route.id})
            await self.end_route()
            snapshot.is_active = False
            snapshot.end_time = route.end_time
        return snapshot

    async def end_route(self) -> bool:
        """End the active route. Returns False, publishing nothing, when there is none."""
        route = self._route
        if route is None:
            return False
        return await self._end(route)

    async def _end(self, route: Route) -> bool:
        # Callable with or without the lock held; state changes before the first await
        if self._route is not route or not route.is_active:
            return False

        route.is_active = False
        route.end_time = self.clock()
        self._route = None
        self._proximity.clear()
        logger.info(
            "Route ended",
            extra={"route_id": route.id, "duration_min": round((route.end_time - route.start_time).total_seconds() / 60)},
        )

        await self._forget(route)
        await self.dispatcher.publish(None)
        return True

    def get_active_route(self) -> Optional[Route]:
        if self._route is None:
            return None
        return self._route.model_copy(deep=True)

    async def restore(self) -> Optional[Route]:
        """
        Reload the active route after a process restart.

        Routes older than the configured max age are dropped from the store.
        """
        try:
            raw = await self.store.get(ACTIVE_ROUTE_KEY)
            fired = await self.store.get(PROXIMITY_STATE_KEY)
        except PersistenceError as e:
            logger.warning("Route restore failed", extra={"error": str(e)})
            return None
        if not raw:
            return None

        route = Route.model_validate(raw)
        if not route.is_active or self.clock() - route.start_time > self.route_max_age:
            logger.info("Stale route discarded on restore", extra={"route_id": route.id})
            await self._forget(route)
            return None

        async with self._lock:
            self._route = route
            self._proximity = ProximityState.from_dict(fired)
            snapshot = route.model_copy(deep=True)

        logger.info("Active route restored", extra={"route_id": route.id, "stops": len(route.stops)})
        await self.dispatcher.publish(snapshot)
        return snapshot

    def get_route_info_for_guardian(self, guardian_id: str) -> GuardianRouteInfo:
        """Shape the active route for one guardian: driver position and their next stop."""
        route = self._route
        if route is None or not route.is_active:
            return GuardianRouteInfo(has_active_route=False)

        own_stops: List[Stop] = route.stops_for_guardian(guardian_id)
        if not own_stops:
            return GuardianRouteInfo(has_active_route=False)

        next_stop = next((s for s in own_stops if s.status == StopStatus.PENDING), None)
        location = route.current_location
        distance = None
        eta = None
        if next_stop is not None and next_stop.coordinate is not None and location is not None:
            distance = distance_meters(location, next_stop.coordinate)
            eta = estimate_arrival(distance, self.average_speed_kmh, location.recorded_at)

        return GuardianRouteInfo(
            has_active_route=True,
            route_id=route.id,
            driver_name=route.driver_name,
            direction=route.direction,
            driver_location=location.model_copy() if location else None,
            next_stop=next_stop.model_copy(deep=True) if next_stop else None,
            distance_meters=round(distance, 1) if distance is not None else None,
            estimated_arrival=eta,
        )
