"""Unit tests for the in-process event broker and the WebSocket stream."""

import asyncio
import logging

from fastapi import WebSocketDisconnect
import pytest

from classvote.api.routes.events import election_events
from classvote.core.events import VOTE_NEW, EventBroker


def test_publish_reaches_every_subscriber():
    broker = EventBroker()
    first = broker.subscribe()
    second = broker.subscribe()

    broker.publish(VOTE_NEW, {"election_id": "e1"})

    for queue in (first, second):
        message = queue.get_nowait()
        assert message["event"] == VOTE_NEW
        assert message["data"] == {"election_id": "e1"}
        assert "timestamp" in message


def test_unsubscribed_queue_gets_nothing():
    broker = EventBroker()
    queue = broker.subscribe()
    broker.unsubscribe(queue)

    broker.publish(VOTE_NEW, {"election_id": "e1"})

    assert queue.empty()
    assert broker.subscriber_count == 0


def test_slow_subscriber_drops_oldest():
    broker = EventBroker(queue_size=2)
    queue = broker.subscribe()

    for n in range(3):
        broker.publish(VOTE_NEW, {"n": n})

    assert [queue.get_nowait()["data"]["n"] for _ in range(queue.qsize())] == [1, 2]


class ClosedSocket:
    """Accepts, then fails every send as a socket closed mid-stream would."""

    def __init__(self, broker: EventBroker) -> None:
        self.broker = broker
        self.send_failed = asyncio.Event()

    async def accept(self) -> None:
        pass

    async def send_json(self, data) -> None:
        self.send_failed.set()
        raise RuntimeError("Cannot call send once a close message has been sent")

    async def receive_text(self) -> str:
        self.broker.publish(VOTE_NEW, {"election_id": "e1"})
        await self.send_failed.wait()
        raise WebSocketDisconnect(code=1006)


@pytest.mark.asyncio
async def test_stream_collects_failed_send_and_unsubscribes(caplog):
    broker = EventBroker()
    caplog.set_level(logging.DEBUG, logger="classvote.api.routes.events")

    await election_events(ClosedSocket(broker), broker)

    assert broker.subscriber_count == 0
    assert any("Event sender stopped" in r.getMessage() for r in caplog.records)
