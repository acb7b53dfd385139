"""
Notification-related enumerations.
"""

import enum


class EventKind(str, enum.Enum):
    """Proximity events derived from driver position and route state."""
    PROXIMITY = "proximity"  # Van within the proximity threshold of the stop
    ARRIVAL = "arrival"  # Van within the arrival radius
    DELAY = "delay"  # Leg is taking longer than its estimate


class NotificationType(str, enum.Enum):
    PROXIMITY = "proximity"
    ARRIVAL = "arrival"
    DELAY = "delay"
    PICKED_UP = "picked_up"
    DROPPED_OFF = "dropped_off"


class NotifyStatus(str, enum.Enum):
    """Outcome of NotificationService.notify."""
    CREATED = "created"
    SUPPRESSED = "suppressed"  # Same deterministic id already recorded
    NOT_PERSISTED = "not_persisted"  # Kept in memory only, store write failed


class InteractionType(str, enum.Enum):
    """Messages sent back by the push transport when a user acts on a notification."""
    CLICK = "notification-click"
    CLOSE = "notification-close"
