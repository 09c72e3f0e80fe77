"""Best-effort event fan-out to match subscribers.

emit() never blocks and never raises: each subscriber owns a bounded queue
and events for a full queue are dropped with a warning.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class EventBus:
    """Per-match subscriber queues."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}
        self.history: Optional[List[Dict[str, Any]]] = None  # set to a list to record events

    def subscribe(self, match_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(match_id, set()).add(queue)
        return queue

    def unsubscribe(self, match_id: str, queue: asyncio.Queue) -> None:
        subs = self._subscribers.get(match_id)
        if not subs:
            return
        subs.discard(queue)
        if not subs:
            self._subscribers.pop(match_id, None)

    def subscriber_count(self, match_id: str) -> int:
        return len(self._subscribers.get(match_id, ()))

    def emit(self, match_id: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        message = {"event": event, "matchId": match_id, "payload": payload or {}, "ts": time.time()}
        if self.history is not None:
            self.history.append(message)
        for queue in list(self._subscribers.get(match_id, ())):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping %s for match %s: subscriber queue full", event, match_id)

    def progress(self, match_id: str, round_number: int, stage: str, **details: Any) -> None:
        """Emit a zk_progress stage update."""
        self.emit(match_id, "zk_progress", {"roundNumber": round_number, "stage": stage, **details})
