"""
WebSocket push channel.

Protocol:
    client -> {"type": "IDENTIFY", "userId": "<id>"}
    server -> {"type": "IDENTIFIED", "userId": "<id>"}
    server -> {"type": "NEW_SWAP_REQUEST" | "SWAP_ACCEPTED" | "SWAP_REJECTED", "data": {...}}

Frames that are not a valid IDENTIFY message are logged and ignored.
Closing the socket unregisters it. Clients re-identify after reconnecting.
"""

import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from slotswap.features.swaps.api.dependencies import get_notification_dispatcher
from slotswap.features.swaps.notifications.channels import WebSocketChannel
from slotswap.features.swaps.notifications.dispatcher import NotificationDispatcher
from slotswap.infrastructure.observability.logging import get_logger

router = APIRouter(tags=["notifications"])
logger = get_logger(__name__)


def parse_identify(raw: str) -> str | None:
    """User id from an IDENTIFY frame, or None if the frame is anything else."""
    try:
        frame = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed WebSocket frame", reason="invalid_json")
        return None

    if not isinstance(frame, dict) or frame.get("type") != "IDENTIFY":
        logger.warning("Ignoring unexpected WebSocket frame", reason="unknown_type")
        return None

    user_id = frame.get("userId")
    if not isinstance(user_id, str) or not user_id:
        logger.warning("Ignoring IDENTIFY frame without userId")
        return None
    return user_id


@router.websocket("/ws")
async def notifications_socket(
    websocket: WebSocket,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    await websocket.accept()
    channel = WebSocketChannel(websocket)
    logger.debug("WebSocket connected", client=str(websocket.client))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            raw = message.get("text")
            if raw is None:
                logger.warning("Ignoring binary WebSocket frame")
                continue

            user_id = parse_identify(raw)
            if user_id is None:
                continue

            dispatcher.register(user_id, channel)
            await websocket.send_text(json.dumps({"type": "IDENTIFIED", "userId": user_id}))
    except WebSocketDisconnect:
        pass
    finally:
        dispatcher.unregister(channel)
