"""
Publish/subscribe dispatch.

Fans route snapshots and notifications out to every registered observer.
A failing or slow observer is logged and skipped; it never stops the
others from receiving the event and never propagates to the publisher.
"""

import asyncio
import inspect
import itertools
import logging
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger("van_tracking.dispatcher")

T = TypeVar("T")

Callback = Callable[[Any], Any]


class Subscription:
    """Handle returned by Dispatcher.subscribe. Call unsubscribe() to stop receiving events."""

    def __init__(self, dispatcher: "Dispatcher", token: int, observer_id: str, topic: Optional[str]):
        self._dispatcher = dispatcher
        self.token = token
        self.observer_id = observer_id
        self.topic = topic

    @property
    def active(self) -> bool:
        return self._dispatcher.is_subscribed(self)

    def unsubscribe(self) -> bool:
        return self._dispatcher.unsubscribe(self)

    def __repr__(self):
        return f"<Subscription(observer={self.observer_id!r}, topic={self.topic!r}, token={self.token})>"


class Dispatcher(Generic[T]):
    """
    Ordered registry of observers.

    Subscriptions with topic None receive every event; topic-scoped ones only
    receive events published with the same topic (e.g. a guardian id).
    Callbacks may be plain functions or coroutine functions.
    """

    def __init__(self, name: str, observer_timeout: Optional[float] = None):
        self.name = name
        self.observer_timeout = observer_timeout
        self._subscriptions: Dict[int, Tuple[Subscription, Callback]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, observer_id: str, callback: Callback, topic: Optional[str] = None) -> Subscription:
        subscription = Subscription(self, next(self._tokens), observer_id, topic)
        # dicts keep insertion order, which is the delivery order
        self._subscriptions[subscription.token] = (subscription, callback)
        logger.debug("Observer subscribed", extra={"channel": self.name, "observer_id": observer_id, "topic": topic})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        removed = self._subscriptions.pop(subscription.token, None) is not None
        if removed:
            logger.debug("Observer unsubscribed", extra={"channel": self.name, "observer_id": subscription.observer_id})
        return removed

    def is_subscribed(self, subscription: Subscription) -> bool:
        return subscription.token in self._subscriptions

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        if topic is None:
            return len(self._subscriptions)
        return sum(1 for sub, _ in self._subscriptions.values() if sub.topic == topic)

    async def publish(self, event: Optional[T], topic: Optional[str] = None) -> int:
        """
        Deliver `event` to every matching observer in registration order.

        The registry is snapshotted first, so (un)subscribing from inside a
        callback only affects the next publish. Returns how many observers
        completed without error.
        """
        snapshot = list(self._subscriptions.values())
        delivered = 0
        for subscription, callback in snapshot:
            if subscription.topic is not None and subscription.topic != topic:
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    if self.observer_timeout is not None:
                        await asyncio.wait_for(result, timeout=self.observer_timeout)
                    else:
                        await result
                delivered += 1
            except asyncio.TimeoutError:
                logger.warning(
                    "Observer timed out",
                    extra={"channel": self.name, "observer_id": subscription.observer_id},
                )
            except Exception:
                logger.exception(
                    "Observer failed",
                    extra={"channel": self.name, "observer_id": subscription.observer_id},
                )
        return delivered
