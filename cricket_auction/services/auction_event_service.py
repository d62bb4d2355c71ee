"""
Auction Event Service

Append-only, hash-chained log of auction domain events.

Rules:
- Events are appended in the same transaction as the change they describe
- Hash = SHA256(previous_hash + sorted_json(event_data) + timestamp)
- The first event of a tournament is chained to "GENESIS"
- Sequence numbers are per tournament and gap-free
- Publishing to subscribers happens only after commit
"""
import json
import hashlib
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.orm.auction import AuctionEvent, AuctionEventType

logger = logging.getLogger(__name__)

GENESIS_HASH = "GENESIS"


# =============================================================================
# Hash Chain Functions
# =============================================================================

def canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(',', ':'))


def compute_event_hash(previous_hash: str, event_data: Dict[str, Any], timestamp: str) -> str:
    """
    Compute the chain hash for an event.

    Args:
        previous_hash: Hash of the previous event (or "GENESIS")
        event_data: Event payload
        timestamp: ISO format timestamp string

    Returns:
        SHA256 hex digest (64 characters)
    """
    data_to_hash = f"{previous_hash}{canonical_json(event_data)}{timestamp}"
    return hashlib.sha256(data_to_hash.encode('utf-8')).hexdigest()


async def get_chain_head(tournament_id: int, db: AsyncSession) -> Optional[AuctionEvent]:
    result = await db.execute(
        select(AuctionEvent)
        .where(AuctionEvent.tournament_id == tournament_id)
        .order_by(AuctionEvent.sequence.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# =============================================================================
# Event Recorder
# =============================================================================

class AuctionEventService:
    """
    Appends events for one unit of work and remembers them so the
    orchestrator can publish them once the transaction has committed.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.pending: List[AuctionEvent] = []

    async def append(
        self,
        tournament_id: int,
        event_type: AuctionEventType,
        entity_type: str,
        entity_id: int,
        event_data: Dict[str, Any]
    ) -> AuctionEvent:
        head = await get_chain_head(tournament_id, self.db)
        previous_hash = head.event_hash if head else GENESIS_HASH
        sequence = head.sequence + 1 if head else 1

        timestamp = datetime.utcnow()
        event_hash = compute_event_hash(previous_hash, event_data, timestamp.isoformat())

        entry = AuctionEvent(
            tournament_id=tournament_id,
            sequence=sequence,
            event_type=event_type.value,
            entity_type=entity_type,
            entity_id=entity_id,
            event_data_json=canonical_json(event_data),
            previous_hash=previous_hash,
            event_hash=event_hash,
            created_at=timestamp
        )
        self.db.add(entry)
        await self.db.flush()
        self.pending.append(entry)

        logger.debug(
            f"Appended event #{sequence} for tournament {tournament_id}: "
            f"{event_type.value} on {entity_type}#{entity_id}"
        )
        return entry

    def drain(self) -> List[AuctionEvent]:
        events, self.pending = self.pending, []
        return events

    def discard(self) -> None:
        self.pending = []


# =============================================================================
# Queries and Verification
# =============================================================================

async def list_events(
    tournament_id: int,
    db: AsyncSession,
    after_sequence: int = 0,
    limit: int = 100
) -> List[AuctionEvent]:
    result = await db.execute(
        select(AuctionEvent)
        .where(
            AuctionEvent.tournament_id == tournament_id,
            AuctionEvent.sequence > after_sequence
        )
        .order_by(AuctionEvent.sequence.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def verify_event_chain(tournament_id: int, db: AsyncSession) -> Dict[str, Any]:
    """
    Verify the integrity of a tournament's event chain.

    Checks:
    1. Sequences run 1..n without gaps
    2. Every previous_hash matches the preceding event_hash
    3. Every event_hash matches the recomputed hash

    Returns:
        Dict with is_valid, total_events, first_broken_sequence and errors
    """
    result = await db.execute(
        select(AuctionEvent)
        .where(AuctionEvent.tournament_id == tournament_id)
        .order_by(AuctionEvent.sequence.asc())
        .execution_options(populate_existing=True)
    )
    events = list(result.scalars().all())

    errors = []
    first_broken = None
    expected_previous = GENESIS_HASH

    for index, entry in enumerate(events, start=1):
        entry_errors = []

        if entry.sequence != index:
            entry_errors.append(f"sequence gap: expected {index}, found {entry.sequence}")

        if entry.previous_hash != expected_previous:
            entry_errors.append("previous_hash does not match the preceding event")

        timestamp_str = entry.created_at.isoformat() if entry.created_at else ""
        computed = compute_event_hash(entry.previous_hash, entry.event_data, timestamp_str)
        if computed != entry.event_hash:
            entry_errors.append(f"hash mismatch: stored '{entry.event_hash}', computed '{computed}'")

        if entry_errors:
            if first_broken is None:
                first_broken = entry.sequence
            errors.extend([f"Event {entry.sequence}: {e}" for e in entry_errors])

        expected_previous = entry.event_hash

    return {
        "is_valid": not errors,
        "total_events": len(events),
        "first_broken_sequence": first_broken,
        "errors": errors,
    }
