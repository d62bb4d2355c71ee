"""
Event Publisher

Hands committed auction events to a broadcast adapter. Delivery and
retry are the subscriber's concern; a failing adapter is logged and
never breaks the operation that produced the events.
"""
import logging
from typing import Iterable, Optional

from cricket_auction.orm.auction import AuctionEvent
from .broadcast_adapter import BroadcastAdapter
from .in_memory_adapter import InMemoryAdapter

logger = logging.getLogger(__name__)


def tournament_channel(tournament_id: int) -> str:
    return f"tournament:{tournament_id}"


class EventPublisher:

    def __init__(self, adapter: Optional[BroadcastAdapter] = None):
        self.adapter = adapter or InMemoryAdapter()

    async def publish(self, events: Iterable[AuctionEvent]) -> int:
        """Publish events in order. Returns the number delivered to the adapter."""
        delivered = 0
        for entry in events:
            message = entry.to_message()
            channel = tournament_channel(entry.tournament_id)
            try:
                await self.adapter.publish(channel, message)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Failed to publish event #{entry.sequence} ({entry.event_type}) "
                    f"on {channel}: {type(e).__name__}: {e}"
                )
        return delivered

    async def close(self) -> None:
        await self.adapter.close()


# Process-wide publisher used by the HTTP layer
event_publisher = EventPublisher()
