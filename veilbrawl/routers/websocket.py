"""WebSocket router streaming match events to players and spectators."""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from veilbrawl.dependencies import get_events
from veilbrawl.services.events import EventBus
from veilbrawl.utils.websocket_utils import ws_alive, ws_send

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/matches/{match_id}")
async def ws_match_events(ws: WebSocket, match_id: str, events: EventBus = Depends(get_events)):
    """Forward every event emitted for a match until the client disconnects."""
    await ws.accept()
    queue = events.subscribe(match_id)
    logger.info("Subscriber joined match %s (%d watching)", match_id, events.subscriber_count(match_id))
    await ws_send(ws, "subscribed", matchId=match_id)

    # Finishes when the client closes its side
    async def watch_disconnect():
        try:
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            return

    watcher = asyncio.create_task(watch_disconnect())
    try:
        while ws_alive(ws) and not watcher.done():
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, watcher}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            message = getter.result()
            if not await ws_send(ws, message["event"], matchId=message["matchId"],
                                 payload=message["payload"], ts=message["ts"]):
                break
    finally:
        watcher.cancel()
        events.unsubscribe(match_id, queue)
