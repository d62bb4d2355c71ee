"""
Idempotency Service

Binds a caller-supplied request key to the resource that the first
successful execution produced, so a retried network call returns the
original result instead of applying the effect twice.

The record is written in the same transaction as the effect itself:
either both commit or neither does.
"""
import hashlib
import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.errors import IdempotencyKeyReused
from cricket_auction.orm.auction import IdempotencyRecord

logger = logging.getLogger(__name__)


def compute_request_fingerprint(operation: str, request: Optional[Dict[str, Any]]) -> str:
    """SHA256 of the operation name plus the canonical JSON of its parameters."""
    payload = json.dumps(request or {}, sort_keys=True, separators=(',', ':'), default=str)
    return hashlib.sha256(f"{operation}:{payload}".encode('utf-8')).hexdigest()


async def find_record(db: AsyncSession, tournament_id: int, key: str) -> Optional[IdempotencyRecord]:
    result = await db.execute(
        select(IdempotencyRecord).where(
            IdempotencyRecord.tournament_id == tournament_id,
            IdempotencyRecord.key == key
        )
    )
    return result.scalar_one_or_none()


def check_fingerprint(record: IdempotencyRecord, operation: str, fingerprint: str) -> None:
    """
    Raises:
        IdempotencyKeyReused: If the key was first used for a different request
    """
    if record.operation != operation or record.request_fingerprint != fingerprint:
        raise IdempotencyKeyReused(
            f"Idempotency key '{record.key}' was already used for a different request",
            details={"key": record.key, "original_operation": record.operation}
        )


async def record_result(
    db: AsyncSession,
    tournament_id: int,
    key: str,
    operation: str,
    fingerprint: str,
    resource_type: str,
    resource_id: int
) -> IdempotencyRecord:
    record = IdempotencyRecord(
        tournament_id=tournament_id,
        key=key,
        operation=operation,
        request_fingerprint=fingerprint,
        resource_type=resource_type,
        resource_id=resource_id
    )
    db.add(record)
    await db.flush()
    return record
