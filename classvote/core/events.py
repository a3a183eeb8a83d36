"""In-process publish/subscribe for advisory election events.

Events are best-effort notifications for connected clients. Nothing in the
ticket or ballot flow depends on them being delivered.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

from classvote.core.logging_config import get_logger

logger = get_logger(__name__)

ELECTION_STARTED = "election:started"
ELECTION_ENDED = "election:ended"
VOTE_NEW = "vote:new"
RESULTS_UPDATED = "election:results:updated"


class EventBroker:
    """Fan out events to subscriber queues.

    A subscriber that falls behind loses its oldest events rather than
    blocking publishers.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._subscribers: set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        message = {
            "event": event,
            "data": payload,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(message)
        logger.debug(f"Published {event} to {len(self._subscribers)} subscribers")


# Global broker instance
event_broker = EventBroker()
