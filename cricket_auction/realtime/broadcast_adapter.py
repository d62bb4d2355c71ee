"""
Broadcast Adapter

Contract between the event publisher and live subscribers such as the
auction websocket feed. The auction_events table stays the record: an
adapter may drop a message, and a subscriber closes the gap from the
table using `event_sequence`.
"""
import abc
import json
from typing import Any, AsyncIterator, Dict

# Field -> type every broadcast message must carry
REQUIRED_FIELDS = {
    "tournament_id": int,
    "event_sequence": int,
    "event_hash": str,
}


def encode_message(message: Dict[str, Any]) -> str:
    """Compact JSON with sorted keys, identical for identical events."""
    return json.dumps(message, sort_keys=True, separators=(",", ":"), default=str)


def decode_message(raw: str) -> Dict[str, Any]:
    return json.loads(raw)


class BroadcastAdapter(abc.ABC):

    @abc.abstractmethod
    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        """Deliver one committed event to every current subscriber of `channel`."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(self, channel: str) -> AsyncIterator[Dict[str, Any]]:
        """Async iterator of decoded messages on `channel`, ending when the adapter closes."""
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    def validate_message(self, message: Dict[str, Any]) -> bool:
        """
        Check the fields subscribers deduplicate and order on.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        missing = [field for field in REQUIRED_FIELDS if field not in message]
        if missing:
            raise ValueError(f"Message missing required fields: {missing}")

        mistyped = [
            field for field, expected in REQUIRED_FIELDS.items()
            if not isinstance(message[field], expected)
        ]
        if mistyped:
            raise ValueError(f"Message fields have the wrong type: {mistyped}")
        return True
