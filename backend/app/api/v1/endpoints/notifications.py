"""
Guardian Notification API Endpoints.

Every operation is scoped to the guardian in the path; a notification id
belonging to someone else answers 404.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, Query

from backend.app.core.dependencies import get_notification_service
from backend.app.core.exceptions import NotificationNotFoundError
from backend.app.schemas.notification import (
    InteractionResponse,
    Notification,
    NotificationCountResponse,
    NotificationInteraction,
)
from backend.app.services.notification_service import NotificationService
from backend.app.services.push_delivery import handle_interaction

router = APIRouter(prefix="/guardians/{guardian_id}/notifications", tags=["Guardian - Notifications"])


@router.get("", response_model=List[Notification])
async def list_notifications(
    guardian_id: str = Path(..., description="Guardian ID"),
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    notifications: NotificationService = Depends(get_notification_service)
):
    """List the guardian's notifications, most recent first."""
    return await notifications.get_for_guardian(guardian_id, unread_only=unread_only, limit=limit)


@router.get("/unread-count", response_model=NotificationCountResponse)
async def unread_count(
    guardian_id: str = Path(..., description="Guardian ID"),
    notifications: NotificationService = Depends(get_notification_service)
):
    return NotificationCountResponse(count=await notifications.unread_count(guardian_id))


@router.patch("/read-all", response_model=NotificationCountResponse)
async def mark_all_notifications_read(
    guardian_id: str = Path(..., description="Guardian ID"),
    notifications: NotificationService = Depends(get_notification_service)
):
    """Mark all notifications as read."""
    return NotificationCountResponse(count=await notifications.mark_all_as_read(guardian_id))


@router.patch("/{notification_id}/read")
async def mark_notification_read(
    guardian_id: str = Path(..., description="Guardian ID"),
    notification_id: str = Path(..., description="Notification ID"),
    notifications: NotificationService = Depends(get_notification_service)
):
    """Mark a specific notification as read."""
    if not await notifications.mark_as_read(notification_id, guardian_id):
        raise NotificationNotFoundError(notification_id)
    return {"status": "success"}


@router.delete("/{notification_id}")
async def delete_notification(
    guardian_id: str = Path(..., description="Guardian ID"),
    notification_id: str = Path(..., description="Notification ID"),
    notifications: NotificationService = Depends(get_notification_service)
):
    if not await notifications.delete(notification_id, guardian_id):
        raise NotificationNotFoundError(notification_id)
    return {"status": "success"}


@router.delete("", response_model=NotificationCountResponse)
async def clear_notifications(
    guardian_id: str = Path(..., description="Guardian ID"),
    notifications: NotificationService = Depends(get_notification_service)
):
    """Remove every notification of the guardian."""
    return NotificationCountResponse(count=await notifications.clear_for_guardian(guardian_id))


@router.post("/interactions", response_model=InteractionResponse)
async def notification_interaction(
    interaction: NotificationInteraction,
    guardian_id: str = Path(..., description="Guardian ID"),
    notifications: NotificationService = Depends(get_notification_service)
):
    """
    Click/close report from the push transport.

    A click marks the notification read and returns the view to open.
    """
    return await handle_interaction(interaction, guardian_id, notifications)
