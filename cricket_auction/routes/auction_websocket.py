"""
Auction WebSocket Endpoint

Read-only live feed of a tournament's committed auction events.

URL: /ws/tournaments/{tournament_id}/auction?last_sequence={n}

Server messages:
- {"type": "EVENT", "event_sequence": n, "event_hash": "...", ...}
- {"type": "PONG", "timestamp": "..."}
- {"type": "ERROR", "message": "..."}

Client messages:
- {"type": "PING"}

A client that reconnects passes the last sequence it saw and receives
everything after it before the live stream resumes.
"""
import asyncio
import json
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.database import get_db
from cricket_auction.errors import NotFoundError
from cricket_auction.realtime.auction_feed import AuctionFeed
from cricket_auction.realtime.event_publisher import event_publisher
from cricket_auction.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)
router = APIRouter()

ALLOWED_CLIENT_MESSAGES = {"PING"}


async def _send(websocket: WebSocket, message: dict) -> None:
    await websocket.send_text(json.dumps(message, sort_keys=True))


@router.websocket("/ws/tournaments/{tournament_id}/auction")
async def auction_websocket(
    websocket: WebSocket,
    tournament_id: int,
    last_sequence: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    try:
        await LedgerStore(db).get_tournament(tournament_id)
    except NotFoundError:
        await db.rollback()
        await websocket.close(code=1008, reason="Tournament not found")
        return
    await db.commit()

    await websocket.accept()
    logger.info(f"[FEED CONNECTED] tournament={tournament_id} last_sequence={last_sequence}")

    feed = AuctionFeed(websocket.send_text, db, tournament_id, last_sequence)
    relay = asyncio.create_task(feed.follow(event_publisher.adapter))

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await _send(websocket, {"type": "ERROR", "message": "Invalid JSON"})
                continue

            msg_type = message.get("type") if isinstance(message, dict) else None
            if msg_type not in ALLOWED_CLIENT_MESSAGES:
                await _send(websocket, {
                    "type": "ERROR",
                    "message": f"Invalid message type. Allowed: {sorted(ALLOWED_CLIENT_MESSAGES)}"
                })
                continue

            await _send(websocket, {"type": "PONG", "timestamp": datetime.utcnow().isoformat()})

    except WebSocketDisconnect:
        logger.info(f"[FEED DISCONNECTED] tournament={tournament_id} last_sequence={feed.last_sequence}")
    finally:
        relay.cancel()
        try:
            await relay
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"[FEED ERROR] tournament={tournament_id}: {type(e).__name__}: {e}")
