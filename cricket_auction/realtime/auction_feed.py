"""
Auction Feed

Relays one tournament's committed events to a single live subscriber.

On connect the feed replays the event log after the subscriber's
`last_sequence`, then follows the tournament's broadcast channel.
A message at or below the last sequence sent is skipped. A jump in
sequence (a message the adapter dropped, or one committed between the
replay and the subscription) is filled from the event log first, so the
subscriber always sees 1, 2, 3, ... without holes.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.services.auction_event_service import list_events
from .broadcast_adapter import BroadcastAdapter, encode_message
from .event_publisher import tournament_channel

logger = logging.getLogger(__name__)

REPLAY_PAGE_SIZE = 200


class AuctionFeed:

    def __init__(
        self,
        send_text: Callable[[str], Awaitable[None]],
        db: AsyncSession,
        tournament_id: int,
        last_sequence: int = 0
    ):
        self.send_text = send_text
        self.db = db
        self.tournament_id = tournament_id
        self.last_sequence = last_sequence

    async def replay(self, up_to: Optional[int] = None) -> int:
        """
        Send logged events after the last sequence sent, stopping after
        `up_to` when given.

        Returns:
            Number of events sent
        """
        sent = 0
        while True:
            events = await list_events(
                self.tournament_id, self.db, after_sequence=self.last_sequence, limit=REPLAY_PAGE_SIZE
            )
            # End the read transaction so the feed never holds a lock while idle
            await self.db.commit()

            for entry in events:
                if up_to is not None and entry.sequence > up_to:
                    return sent
                await self._send(entry.to_message())
                sent += 1

            if len(events) < REPLAY_PAGE_SIZE:
                return sent

    async def deliver(self, message: Dict[str, Any]) -> bool:
        """Send a broadcast message in sequence. Returns False for a duplicate."""
        sequence = message["event_sequence"]
        if sequence <= self.last_sequence:
            return False

        if sequence > self.last_sequence + 1:
            missed = await self.replay(up_to=sequence - 1)
            logger.info(
                f"[FEED GAP FILLED] tournament={self.tournament_id} "
                f"before_sequence={sequence} replayed={missed}"
            )

        await self._send(message)
        return True

    async def follow(self, adapter: BroadcastAdapter) -> None:
        """Replay, then relay the channel until the adapter closes."""
        replayed = await self.replay()
        logger.info(
            f"[FEED STARTED] tournament={self.tournament_id} replayed={replayed} "
            f"last_sequence={self.last_sequence}"
        )
        async for message in adapter.subscribe(tournament_channel(self.tournament_id)):
            await self.deliver(message)

    async def _send(self, message: Dict[str, Any]) -> None:
        await self.send_text(encode_message({"type": "EVENT", **message}))
        self.last_sequence = message["event_sequence"]
