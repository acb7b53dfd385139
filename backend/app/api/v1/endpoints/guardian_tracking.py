"""
Guardian Tracking API Endpoints.

Guardians read the active route as it concerns their own stops, and can keep
a websocket open to receive route updates and their notifications live.
"""

import asyncio
import contextlib
import logging

from fastapi import APIRouter, Depends, Path, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from backend.app.core.dependencies import get_route_manager
from backend.app.schemas.notification import Notification, NotificationInteraction
from backend.app.schemas.route import GuardianRouteInfo
from backend.app.services.push_delivery import handle_interaction
from backend.app.services.route_tracking import RouteStateManager

logger = logging.getLogger("van_tracking.ws")

router = APIRouter(prefix="/guardians", tags=["Guardian - Tracking"])
ws_router = APIRouter(tags=["Guardian - Live"])

# Per-connection backlog; a client this far behind loses the oldest updates
WS_QUEUE_SIZE = 100


@router.get("/{guardian_id}/route-info", response_model=GuardianRouteInfo)
async def get_route_info(
    guardian_id: str = Path(..., description="Guardian ID"),
    manager: RouteStateManager = Depends(get_route_manager)
):
    """
    Active route seen from one guardian.

    has_active_route is false when no trip is running or none of its stops
    belong to this guardian.
    """
    return manager.get_route_info_for_guardian(guardian_id)


def _enqueue(queue: asyncio.Queue, message: dict) -> None:
    if queue.full():
        queue.get_nowait()
        logger.warning("Websocket backlog full, oldest update dropped")
    queue.put_nowait(message)


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _receive(websocket: WebSocket, guardian_id: str, engine, queue: asyncio.Queue) -> None:
    while True:
        raw = await websocket.receive_text()
        try:
            interaction = NotificationInteraction.model_validate_json(raw)
        except ValidationError as e:
            errors = jsonable_encoder(e.errors(include_url=False))
            _enqueue(queue, {"type": "error", "data": {"message": "Invalid message", "errors": errors}})
            continue
        result = await handle_interaction(interaction, guardian_id, engine.notifications)
        _enqueue(queue, {"type": "interaction", "data": result})


@ws_router.websocket("/ws/guardians/{guardian_id}")
async def guardian_updates(websocket: WebSocket, guardian_id: str):
    """
    Live feed for one guardian.

    Server -> client: {"type": "route" | "notification" | "interaction" | "error", "data": ...}
    Client -> server: {"type": "notification-click" | "notification-close", "payload": {...}}
    """
    engine = websocket.app.state.engine
    await websocket.accept()
    await engine.notifications.cleanup_old(guardian_id=guardian_id)

    queue: asyncio.Queue = asyncio.Queue(maxsize=WS_QUEUE_SIZE)

    def on_route(_route) -> None:
        info = engine.routes.get_route_info_for_guardian(guardian_id)
        _enqueue(queue, {"type": "route", "data": info.model_dump(mode="json")})

    def on_notification(notification: Notification) -> None:
        _enqueue(queue, {"type": "notification", "data": notification.model_dump(mode="json")})

    subscriptions = [
        engine.route_channel.subscribe(f"ws:{guardian_id}", on_route),
        engine.notification_channel.subscribe(f"ws:{guardian_id}", on_notification, topic=guardian_id),
    ]
    on_route(None)
    sender = asyncio.create_task(_pump(websocket, queue))
    receiver = asyncio.create_task(_receive(websocket, guardian_id, engine, queue))
    logger.info("Guardian connected", extra={"guardian_id": guardian_id})

    try:
        # Whichever side stops first (client gone or a failed send) closes the feed
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is None or isinstance(error, WebSocketDisconnect):
                logger.info("Guardian disconnected", extra={"guardian_id": guardian_id})
            else:
                logger.warning("Guardian feed failed", extra={"guardian_id": guardian_id, "error": repr(error)})
    finally:
        for subscription in subscriptions:
            subscription.unsubscribe()
        for task in (sender, receiver):
            task.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)

    if sender in done and receiver not in done:
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await websocket.close(code=1011)
