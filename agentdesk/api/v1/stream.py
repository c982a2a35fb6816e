"""WebSocket stream of conversation events."""

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ...services.stream_bus import StreamBus, Subscription
from ...utils.logger import get_app_logger

router = APIRouter(tags=["Stream"])

# Stream bus (set by main.py)
stream_bus: StreamBus = None
logger = get_app_logger()


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.model_dump(mode="json"))


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_stream(websocket: WebSocket, conversation_id: str):
    """
    Push every event of a conversation to the client.

    Args:
        websocket: WebSocket connection
        conversation_id: Conversation to follow
    """
    await websocket.accept()
    if stream_bus is None:
        await websocket.send_json({"type": "error", "data": "Stream bus not initialized"})
        await websocket.close()
        return

    subscription = stream_bus.subscribe(conversation_id)
    await websocket.send_json({"type": "connected", "conversation_id": conversation_id})
    forwarder = asyncio.create_task(_forward(websocket, subscription))
    logger.info(f"WebSocket stream opened for conversation: {conversation_id}")

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "data": "Invalid JSON message"})
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await websocket.send_json({"type": "error", "data": "Unknown message type"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for conversation: {conversation_id}")

    except Exception as e:
        logger.error(f"WebSocket error for conversation {conversation_id}: {e}")

    finally:
        subscription.close()
        forwarder.cancel()
        logger.info(f"WebSocket stream closed for conversation: {conversation_id}")
