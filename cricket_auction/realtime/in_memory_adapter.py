"""
In-Memory Broadcast Adapter

Local-only broadcast implementation using asyncio.Queue. Default adapter
for a single-process deployment and for tests.
"""
import asyncio
import json
import logging
from typing import Dict, Any, Set

from .broadcast_adapter import BroadcastAdapter, encode_message, decode_message

logger = logging.getLogger(__name__)


class InMemoryAdapter(BroadcastAdapter):
    """
    In-memory broadcast adapter.

    Each subscriber owns a bounded queue; a slow subscriber loses
    messages rather than blocking the publisher.
    """

    def __init__(self, max_queue_size: int = 100):
        self._channels: Dict[str, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self._max_queue_size = max_queue_size

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        self.validate_message(message)

        serialized = encode_message(message)

        async with self._lock:
            if channel in self._channels:
                # Copy to avoid modification during iteration
                queues = list(self._channels[channel])
                for queue in queues:
                    try:
                        queue.put_nowait(serialized)
                    except asyncio.QueueFull:
                        logger.warning(
                            f"Dropping event {message['event_sequence']} on {channel}: subscriber queue full"
                        )

    async def subscribe(self, channel: str):
        """
        Subscribe to channel and yield messages until the adapter closes.

        Yields:
            Parsed message dicts
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)

        async with self._lock:
            if channel not in self._channels:
                self._channels[channel] = set()
            self._channels[channel].add(queue)

        try:
            while True:
                serialized = await queue.get()
                if serialized is None:
                    break
                try:
                    yield decode_message(serialized)
                except json.JSONDecodeError:
                    continue
        finally:
            async with self._lock:
                if channel in self._channels:
                    self._channels[channel].discard(queue)

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def close(self) -> None:
        """Close all channels."""
        async with self._lock:
            for channel in self._channels:
                for queue in self._channels[channel]:
                    if queue.full():
                        queue.get_nowait()
                    queue.put_nowait(None)  # Signal shutdown
            self._channels.clear()
