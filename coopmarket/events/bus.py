import asyncio
import logging
from typing import Any, Dict, List

from coopmarket.core.config import EVENT_BUS_QUEUE_SIZE
from coopmarket.events import ledger
from coopmarket.schemas.ledger import Actor, LedgerEvent

log = logging.getLogger(__name__)


class EventBus:
    """
    Records domain events in the ledger, then fans the sanitized envelope out to
    subscribers (e.g. the real-time socket layer) over bounded queues.

    The append is awaited and its failure propagates to the command. Fan-out is
    best effort: a subscriber whose queue is full misses the envelope and can
    catch up from the ledger.
    """

    def __init__(self, queue_size: int = EVENT_BUS_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self, maxsize: int = None) -> asyncio.Queue:
        queue = asyncio.Queue(maxsize=maxsize or self.queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def emit(
        self,
        event_type: str,
        aggregate_id,
        aggregate_type: str,
        actor: Actor,
        data: Dict[str, Any],
    ) -> LedgerEvent:
        event = await ledger.append_event(
            event_type=event_type,
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            actor=actor,
            data=data,
        )
        self.publish(event)
        log.info(f"Event {event.type} v{event.version} recorded for {aggregate_type}:{event.aggregate_id}")
        return event

    def publish(self, event: LedgerEvent) -> None:
        envelope = event.envelope()
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(envelope)
            except asyncio.QueueFull:
                log.warning(f"Subscriber queue full, dropped {event.type} for {event.aggregate_id}")


event_bus = EventBus()
