"""
Tracking engine assembly.

Wires the store, the two broadcast channels (route snapshots and guardian
notifications), the notification service, the route manager, push delivery
and the movement simulator into one object owned by the application.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence

from backend.app.core.config import Settings
from backend.app.core.redis_client import ping_redis
from backend.app.core.timeutils import utcnow
from backend.app.schemas.route import Coordinate
from backend.app.services.dispatcher import Dispatcher
from backend.app.services.kv_store import BoundedStore, KeyValueStore, RedisKeyValueStore, build_store
from backend.app.services.movement_simulator import DEFAULT_WAYPOINTS, MovementSimulator
from backend.app.services.notification_service import NotificationService
from backend.app.services.push_delivery import PushObserver, PushTransport
from backend.app.services.route_tracking import RouteStateManager

logger = logging.getLogger("van_tracking.engine")


class TrackingEngine:

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        transport: Optional[PushTransport] = None,
        waypoints: Optional[Sequence[Coordinate]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.route_channel = Dispatcher("routes", observer_timeout=settings.observer_timeout_seconds)
        self.notification_channel = Dispatcher("notifications", observer_timeout=settings.observer_timeout_seconds)
        self.notifications = NotificationService(store, self.notification_channel, settings)
        self.routes = RouteStateManager(store, self.route_channel, self.notifications, settings, clock=clock)
        self.push = PushObserver.from_settings(settings, transport)
        self.push.attach(self.notification_channel)
        self.simulator = MovementSimulator(
            waypoints or DEFAULT_WAYPOINTS,
            tick_seconds=settings.simulator_tick_seconds,
            step_fraction=settings.simulator_step_fraction,
        )
        self.simulator.attach(self.routes)

    async def start(self) -> None:
        """Restore the persisted route and apply notification retention."""
        route = await self.routes.restore()
        removed = await self.notifications.cleanup_old()
        logger.info(
            "Tracking engine started",
            extra={"restored_route": route.id if route else None, "expired_notifications": removed},
        )

    async def close(self) -> None:
        self.simulator.stop_movement()
        self.push.detach()
        await self.push.transport.close()
        await self.store.close()
        logger.info("Tracking engine stopped")

    async def health(self) -> Dict[str, str]:
        inner = self.store.inner if isinstance(self.store, BoundedStore) else self.store
        status = {"store": self.settings.store_backend}
        if isinstance(inner, RedisKeyValueStore):
            status["redis"] = "up" if await ping_redis(inner.client) else "down"
        status["push_circuit"] = self.push.breaker.state
        return status


async def build_engine(
    settings: Settings,
    store: Optional[KeyValueStore] = None,
    transport: Optional[PushTransport] = None,
) -> TrackingEngine:
    if store is None:
        store = await build_store(settings)
    return TrackingEngine(settings, store, transport=transport)
