"""
Notification Service.

Turns route events into guardian notifications, deduplicates them by a
deterministic id, persists them in the key-value store with a retention
policy, and publishes new ones on the notification channel.

Storage faults never reach the caller: a failed write leaves the record in
memory and is reported as NotifyStatus.NOT_PERSISTED.
"""

import asyncio
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import ValidationError

from backend.app.core.config import Settings
from backend.app.core.exceptions import PersistenceError
from backend.app.core.timeutils import utcnow
from backend.app.models.notification_enums import NotificationType, NotifyStatus
from backend.app.models.route_enums import RouteDirection, StopKind
from backend.app.schemas.notification import Notification, NotificationEvent, NotifyResult
from backend.app.schemas.route import Route, Stop
from backend.app.services.dispatcher import Dispatcher
from backend.app.services.kv_store import KeyValueStore

logger = logging.getLogger("van_tracking.notifications")

GUARDIAN_INDEX_KEY = "notifications:guardians"


def notification_key(guardian_id: str) -> str:
    return f"notifications:{guardian_id}"


def make_notification_id(
    guardian_id: str,
    route_id: str,
    stop_id: str,
    type: NotificationType,
    occurred_at: datetime,
    bucket_seconds: int,
) -> str:
    """
    Deterministic id: the same guardian/route/stop/type inside one time
    bucket always hashes to the same value, across restarts too.
    """
    bucket = int(occurred_at.timestamp() // bucket_seconds)
    raw = f"{guardian_id}|{route_id}|{stop_id}|{NotificationType(type).value}|{bucket}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def compose_event(
    type: NotificationType,
    route: Route,
    stop: Stop,
    occurred_at: datetime,
    distance_meters: Optional[float] = None,
    estimated_arrival: Optional[datetime] = None,
) -> NotificationEvent:
    """Build the direction-aware title and message for an event about `stop`."""
    driver = route.driver_name
    label = stop.label
    to_school = route.direction == RouteDirection.TO_SCHOOL
    is_school = stop.kind == StopKind.SCHOOL
    eta = f" Estimated arrival {estimated_arrival:%H:%M}." if estimated_arrival else ""

    if type == NotificationType.PROXIMITY:
        title = f"{driver} is approaching"
        distance = f"{round(distance_meters)} m" if distance_meters is not None else "close"
        if is_school:
            message = f"The van is {distance} from {label}.{eta}"
        elif to_school:
            message = f"The van is {distance} from {label}'s pickup point.{eta}"
        else:
            message = f"The van is {distance} from {label}'s home.{eta}"
    elif type == NotificationType.ARRIVAL:
        title = f"{driver} has arrived"
        if is_school:
            message = f"The van has arrived at {label}."
        elif to_school:
            message = f"The van is at {label}'s pickup point."
        else:
            message = f"The van is at {label}'s drop-off point."
    elif type == NotificationType.DELAY:
        title = f"Delay on the way to {label}"
        message = f"{driver} is running behind schedule for {label}.{eta}"
    elif type == NotificationType.PICKED_UP:
        title = f"{label} boarded the van"
        message = f"{label} is on the way to {'school' if to_school else 'home'}."
    else:
        title = f"{label} was dropped off"
        message = f"{label} was dropped off at {'school' if to_school else 'home'}."

    payload = {
        "driver_name": driver,
        "stop_label": label,
        "direction": route.direction.value,
    }
    if distance_meters is not None:
        payload["distance_meters"] = round(distance_meters)
    if estimated_arrival is not None:
        payload["estimated_arrival"] = estimated_arrival.isoformat()

    return NotificationEvent(
        type=type,
        route_id=route.id,
        stop_id=stop.id,
        occurred_at=occurred_at,
        title=title,
        message=message,
        payload=payload,
    )


class NotificationService:

    def __init__(self, store: KeyValueStore, dispatcher: Dispatcher, settings: Settings):
        self.store = store
        self.dispatcher = dispatcher
        self.bucket_seconds = settings.notification_dedup_bucket_seconds
        self.retention = timedelta(hours=settings.notification_retention_hours)
        self.max_per_guardian = settings.notification_max_per_guardian
        # guardian id -> notifications, newest first
        self._cache: Dict[str, List[Notification]] = {}
        self._loaded: set = set()
        self._guardians: Optional[set] = None
        self._lock = asyncio.Lock()

    # --- persistence helpers (callers hold self._lock) ---

    async def _load(self, guardian_id: str) -> List[Notification]:
        items = self._cache.setdefault(guardian_id, [])
        if guardian_id in self._loaded:
            return items
        try:
            stored = await self.store.get(notification_key(guardian_id)) or []
        except PersistenceError as e:
            logger.warning("Notification load failed, using memory only", extra={"guardian_id": guardian_id, "error": str(e)})
            return items

        if not isinstance(stored, list):
            logger.warning("Stored notifications malformed, ignored", extra={"guardian_id": guardian_id})
            stored = []

        known = {n.id for n in items}
        for raw in stored:
            try:
                notification = Notification.model_validate(raw)
            except ValidationError as e:
                logger.warning(
                    "Stored notification skipped, invalid record",
                    extra={"guardian_id": guardian_id, "error_count": e.error_count()},
                )
                continue
            if notification.id not in known:
                items.append(notification)
        items.sort(key=lambda n: n.created_at, reverse=True)
        self._loaded.add(guardian_id)
        return items

    async def _save(self, guardian_id: str) -> bool:
        items = self._cache.get(guardian_id, [])
        try:
            if items:
                await self.store.set(notification_key(guardian_id), [n.model_dump(mode="json") for n in items])
            else:
                await self.store.delete(notification_key(guardian_id))
        except PersistenceError as e:
            logger.warning("Notification write failed", extra={"guardian_id": guardian_id, "error": str(e)})
            return False
        return True

    async def _known_guardians(self) -> set:
        if self._guardians is None:
            try:
                self._guardians = set(await self.store.get(GUARDIAN_INDEX_KEY) or [])
            except PersistenceError as e:
                logger.warning("Guardian index load failed", extra={"error": str(e)})
                return set(self._cache)
        return self._guardians | set(self._cache)

    async def _register_guardian(self, guardian_id: str) -> None:
        guardians = await self._known_guardians()
        if self._guardians is not None and guardian_id in self._guardians:
            return
        guardians.add(guardian_id)
        self._guardians = guardians
        try:
            await self.store.set(GUARDIAN_INDEX_KEY, sorted(guardians))
        except PersistenceError as e:
            logger.warning("Guardian index write failed", extra={"error": str(e)})

    # --- public API ---

    async def notify(self, guardian_id: str, event: NotificationEvent) -> NotifyResult:
        notification_id = make_notification_id(
            guardian_id, event.route_id, event.stop_id, event.type, event.occurred_at, self.bucket_seconds
        )

        async with self._lock:
            items = await self._load(guardian_id)
            if any(n.id == notification_id for n in items):
                logger.info(
                    "Duplicate notification suppressed",
                    extra={"guardian_id": guardian_id, "notification_id": notification_id, "type": event.type.value},
                )
                return NotifyResult(status=NotifyStatus.SUPPRESSED)

            notification = Notification(
                id=notification_id,
                guardian_id=guardian_id,
                type=event.type,
                title=event.title,
                message=event.message,
                payload={
                    **event.payload,
                    "route_id": event.route_id,
                    "stop_id": event.stop_id,
                    "type": event.type.value,
                },
                created_at=event.occurred_at,
            )
            items.insert(0, notification)
            items.sort(key=lambda n: n.created_at, reverse=True)
            del items[self.max_per_guardian:]

            await self._register_guardian(guardian_id)
            persisted = await self._save(guardian_id)

        logger.info(
            "Notification created",
            extra={"guardian_id": guardian_id, "notification_id": notification_id, "type": event.type.value,
                   "persisted": persisted},
        )
        await self.dispatcher.publish(notification.model_copy(deep=True), topic=guardian_id)
        status = NotifyStatus.CREATED if persisted else NotifyStatus.NOT_PERSISTED
        return NotifyResult(status=status, notification=notification.model_copy(deep=True))

    async def get_for_guardian(
        self, guardian_id: str, unread_only: bool = False, limit: Optional[int] = None
    ) -> List[Notification]:
        """Guardian's notifications, most recent first."""
        async with self._lock:
            items = await self._load(guardian_id)
            selected = [n for n in items if not (unread_only and n.is_read)]
        if limit is not None:
            selected = selected[:limit]
        return [n.model_copy(deep=True) for n in selected]

    async def unread_count(self, guardian_id: str) -> int:
        async with self._lock:
            items = await self._load(guardian_id)
            return sum(1 for n in items if not n.is_read)

    async def mark_as_read(self, notification_id: str, guardian_id: str) -> bool:
        async with self._lock:
            items = await self._load(guardian_id)
            for notification in items:
                if notification.id == notification_id:
                    if not notification.is_read:
                        notification.is_read = True
                        notification.read_at = utcnow()
                        await self._save(guardian_id)
                    return True
        return False

    async def mark_all_as_read(self, guardian_id: str) -> int:
        count = 0
        async with self._lock:
            items = await self._load(guardian_id)
            now = utcnow()
            for notification in items:
                if not notification.is_read:
                    notification.is_read = True
                    notification.read_at = now
                    count += 1
            if count:
                await self._save(guardian_id)
        return count

    async def delete(self, notification_id: str, guardian_id: str) -> bool:
        async with self._lock:
            items = await self._load(guardian_id)
            remaining = [n for n in items if n.id != notification_id]
            if len(remaining) == len(items):
                return False
            items[:] = remaining
            await self._save(guardian_id)
        logger.info("Notification deleted", extra={"guardian_id": guardian_id, "notification_id": notification_id})
        return True

    async def clear_for_guardian(self, guardian_id: str) -> int:
        async with self._lock:
            items = await self._load(guardian_id)
            count = len(items)
            items.clear()
            await self._save(guardian_id)
        return count

    async def cleanup_old(
        self, max_age: Optional[timedelta] = None, guardian_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> int:
        """
        Remove notifications older than `max_age` (default: retention setting).

        Scoped to one guardian when `guardian_id` is given, otherwise every
        guardian that ever received a notification. Returns how many were removed.
        """
        cutoff = (now or utcnow()) - (max_age if max_age is not None else self.retention)
        removed = 0
        async with self._lock:
            guardians = [guardian_id] if guardian_id else sorted(await self._known_guardians())
            for gid in guardians:
                items = await self._load(gid)
                kept = [n for n in items if n.created_at >= cutoff]
                if len(kept) != len(items):
                    removed += len(items) - len(kept)
                    items[:] = kept
                    await self._save(gid)
        if removed:
            logger.info("Old notifications removed", extra={"count": removed, "guardian_id": guardian_id})
        return removed
