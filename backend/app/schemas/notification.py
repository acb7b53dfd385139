"""
Notification Schemas.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional, Dict, Any

from backend.app.core.timeutils import as_utc
from backend.app.models.notification_enums import NotificationType, NotifyStatus, InteractionType


class NotificationEvent(BaseModel):
    """A qualifying event about one stop, before it becomes a guardian record."""
    type: NotificationType
    route_id: str
    stop_id: str
    occurred_at: datetime
    title: str
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("occurred_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class Notification(BaseModel):
    id: str
    guardian_id: str
    type: NotificationType
    title: str
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)  # route_id / stop_id / type for deep links
    created_at: datetime
    is_read: bool = False
    read_at: Optional[datetime] = None


class NotifyResult(BaseModel):
    status: NotifyStatus
    notification: Optional[Notification] = None

    @property
    def created(self) -> bool:
        return self.status != NotifyStatus.SUPPRESSED


class NotificationInteraction(BaseModel):
    """Inbound message from the push transport layer."""
    type: InteractionType
    payload: Dict[str, Any] = Field(default_factory=dict)


class InteractionResponse(BaseModel):
    deep_link: Optional[str]
    marked_read: bool


class NotificationCountResponse(BaseModel):
    status: str = "success"
    count: int
