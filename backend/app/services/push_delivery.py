"""
Push delivery channel.

PushObserver listens on the notification channel and hands each new
notification to a PushTransport. Delivery is best-effort: it is bounded by a
timeout, guarded by a circuit breaker, and any failure is logged and
swallowed here so the tracking loop never sees it.

The transport layer reports user interaction back with
{"type": "notification-click" | "notification-close", "payload": {...}};
resolve_deep_link() maps that payload to the in-app view to open.
"""

import abc
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from backend.app.core.config import Settings
from backend.app.core.exceptions import TransportError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.models.notification_enums import InteractionType, NotificationType
from backend.app.schemas.notification import Notification, NotificationInteraction
from backend.app.services.dispatcher import Dispatcher, Subscription

logger = logging.getLogger("van_tracking.push")

TRACKING_VIEW = "/guardian/tracking"
ROUTES_VIEW = "/guardian/routes"

DEEP_LINKS = {
    NotificationType.PROXIMITY: TRACKING_VIEW,
    NotificationType.ARRIVAL: TRACKING_VIEW,
    NotificationType.DELAY: ROUTES_VIEW,
    NotificationType.PICKED_UP: ROUTES_VIEW,
    NotificationType.DROPPED_OFF: ROUTES_VIEW,
}


def build_push_message(notification: Notification) -> Dict[str, Any]:
    """Platform notification body: display fields plus the payload the click handler gets back."""
    return {
        "guardian_id": notification.guardian_id,
        "title": notification.title,
        "body": notification.message,
        # Same tag replaces an older system notification for the same stop/event
        "tag": f"{notification.type.value}-{notification.payload.get('stop_id', '')}",
        "data": {**notification.payload, "notification_id": notification.id},
    }


def resolve_deep_link(payload: Dict[str, Any]) -> Optional[str]:
    """In-app view for a notification payload, or None for unknown types."""
    try:
        kind = NotificationType(payload.get("type"))
    except ValueError:
        return None
    link = DEEP_LINKS[kind]
    route_id = payload.get("route_id")
    stop_id = payload.get("stop_id")
    if route_id and stop_id:
        return f"{link}?route_id={route_id}&stop_id={stop_id}"
    return link


class PushTransport(abc.ABC):

    @abc.abstractmethod
    async def deliver(self, notification: Notification) -> None:
        """Hand the notification to the platform. Raise TransportError on failure."""

    async def close(self) -> None:
        pass


class LoggingPushTransport(PushTransport):
    """Default transport when no push endpoint is configured: records the intent only."""

    async def deliver(self, notification: Notification) -> None:
        logger.info("Push intent", extra=build_push_message(notification))


class WebhookPushTransport(PushTransport):
    """POSTs the push message as JSON to a platform push gateway."""

    def __init__(self, url: str, timeout: float = 3.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def deliver(self, notification: Notification) -> None:
        try:
            response = await self.client.post(self.url, json=build_push_message(notification))
        except httpx.HTTPError as e:
            raise TransportError(f"Push gateway unreachable: {e}") from e
        if response.status_code >= 400:
            raise TransportError(f"Push gateway rejected notification: HTTP {response.status_code}")

    async def close(self) -> None:
        await self.client.aclose()


class PushObserver:
    """Best-effort bridge from the notification channel to a PushTransport."""

    def __init__(self, transport: PushTransport, breaker: CircuitBreaker):
        self.transport = transport
        self.breaker = breaker
        self.delivered = 0
        self.failed = 0
        self._subscription: Optional[Subscription] = None

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[PushTransport] = None) -> "PushObserver":
        if transport is None:
            if settings.push_webhook_url:
                transport = WebhookPushTransport(settings.push_webhook_url, timeout=settings.push_timeout_seconds)
            else:
                transport = LoggingPushTransport()
        breaker = CircuitBreaker(
            "push",
            failure_threshold=settings.push_failure_threshold,
            reset_timeout=settings.push_reset_timeout,
            call_timeout=settings.push_timeout_seconds,
        )
        return cls(transport, breaker)

    def attach(self, dispatcher: Dispatcher) -> Subscription:
        self._subscription = dispatcher.subscribe("push-transport", self.handle)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def handle(self, notification: Notification) -> bool:
        try:
            await self.breaker.call(self.transport.deliver, notification)
        except CircuitOpenError:
            self.failed += 1
            logger.warning("Push skipped, circuit open", extra={"notification_id": notification.id})
            return False
        except asyncio.CancelledError:
            self.failed += 1
            logger.warning("Push delivery cancelled", extra={"notification_id": notification.id})
            raise
        except Exception as e:
            self.failed += 1
            logger.warning(
                "Push delivery failed",
                extra={"notification_id": notification.id, "guardian_id": notification.guardian_id, "error": repr(e)},
            )
            return False
        self.delivered += 1
        return True


async def handle_interaction(interaction: NotificationInteraction, guardian_id: str, notifications) -> Dict[str, Any]:
    """
    Process a click/close message from the transport layer.

    A click marks the notification read and returns the view to open.
    """
    deep_link = resolve_deep_link(interaction.payload)
    marked_read = False
    notification_id = interaction.payload.get("notification_id")
    if interaction.type == InteractionType.CLICK and notification_id:
        marked_read = await notifications.mark_as_read(notification_id, guardian_id)
    logger.info(
        "Notification interaction",
        extra={"guardian_id": guardian_id, "interaction": interaction.type.value, "notification_id": notification_id},
    )
    return {
        "deep_link": deep_link if interaction.type == InteractionType.CLICK else None,
        "marked_read": marked_read,
    }
