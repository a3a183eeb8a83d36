"""WebSocket stream of election events."""

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from classvote.api.deps import get_event_broker
from classvote.core.events import EventBroker
from classvote.core.logging_config import get_logger

router = APIRouter(tags=["Events"])
logger = get_logger(__name__)


async def _forward_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(jsonable_encoder(message))


@router.websocket("/ws/events")
async def election_events(
    websocket: WebSocket,
    broker: Annotated[EventBroker, Depends(get_event_broker)],
):
    """
    Stream ``election:started``, ``election:ended``, ``vote:new`` and
    ``election:results:updated`` messages to the client.

    Events are advisory; clients re-fetch state over HTTP after each one.
    Anything the client sends is ignored.
    """
    await websocket.accept()
    queue = broker.subscribe()
    sender = asyncio.create_task(_forward_events(websocket, queue))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Event subscriber disconnected")
    finally:
        sender.cancel()
        broker.unsubscribe(queue)
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Event sender stopped: {e}")
