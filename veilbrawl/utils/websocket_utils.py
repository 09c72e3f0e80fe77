"""WebSocket utility functions for safe message sending."""

import json
import logging
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


async def ws_send(ws: WebSocket, kind: str, **payload: Any) -> bool:
    """
    Send an event frame through a WebSocket without raising.

    Args:
        ws: The WebSocket connection
        kind: Event name, sent as the frame's "type"
        **payload: Additional frame fields (must be JSON serializable)

    Returns:
        True if the frame was sent, False if the socket is gone
    """
    state = getattr(ws, "application_state", None)
    if state not in (None, WebSocketState.CONNECTED):
        return False
    try:
        await ws.send_text(json.dumps({"type": kind, **payload}, default=str))
        return True
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("WebSocket send of %s failed: %s", kind, exc)
        return False


def ws_alive(ws: Optional[WebSocket]) -> bool:
    """True if the connection is still open on our side."""
    return bool(
        ws and getattr(ws, "application_state", None) == WebSocketState.CONNECTED
    )
