"""
Auction API Routes

Round control, bidding and settlement for one tournament. Every mutating
route accepts an `Idempotency-Key` header; bids, sales and unsold
dispositions require it so a retried request never applies twice.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.config.settings import settings
from cricket_auction.database import get_db
from cricket_auction.orm.auction import IDEMPOTENCY_KEY_MAX_LENGTH
from cricket_auction.realtime.event_publisher import event_publisher
from cricket_auction.services.auction_orchestrator import AuctionOrchestrator
from cricket_auction.services.auction_event_service import list_events, verify_event_chain
from cricket_auction.services.ledger_store import LedgerStore
from cricket_auction.schemas.registration import TournamentResponse, PlayerResponse
from cricket_auction.schemas.auction import (
    RoundCreate, BulkRoundCreate, AssignPlayersRequest, OpenPlayerRequest, RoundResponse,
    BidCreate, BidResponse, SellRequest, UnsoldRequest, ReselectRequest, SaleResponse,
    LiveStateResponse, TeamSummaryResponse, AuctionEventResponse, ChainVerificationResponse
)

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(
    prefix="/api/tournaments/{tournament_id}/auction",
    tags=["Auction"],
    responses={
        400: {"description": "Bid or budget rule rejected"},
        404: {"description": "Resource not found"},
        409: {"description": "State transition conflict"},
        422: {"description": "Validation error or idempotency key reused"}
    }
)


def get_orchestrator(db: AsyncSession = Depends(get_db)) -> AuctionOrchestrator:
    return AuctionOrchestrator(db, publisher=event_publisher)


# =============================================================================
# Rounds
# =============================================================================

@router.post("/rounds", response_model=RoundResponse, status_code=status.HTTP_201_CREATED)
async def create_round(
    tournament_id: int,
    payload: RoundCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    round_obj = await orchestrator.create_round(
        tournament_id, name=payload.name, player_ids=payload.player_ids, idempotency_key=idempotency_key
    )
    return RoundResponse.model_validate(round_obj)


@router.post("/rounds/bulk", response_model=List[RoundResponse], status_code=status.HTTP_201_CREATED)
async def bulk_create_rounds(
    tournament_id: int,
    payload: BulkRoundCreate,
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    """Create several rounds in one transaction."""
    rounds = await orchestrator.bulk_create_rounds(
        tournament_id, [r.model_dump() for r in payload.rounds]
    )
    return [RoundResponse.model_validate(r) for r in rounds]


@router.get("/rounds", response_model=List[RoundResponse])
async def list_rounds(tournament_id: int, db: AsyncSession = Depends(get_db)):
    store = LedgerStore(db)
    await store.get_tournament(tournament_id)
    return [RoundResponse.model_validate(r) for r in await store.rounds(tournament_id)]


@router.post("/rounds/{round_id}/players", response_model=List[PlayerResponse])
async def assign_players(
    tournament_id: int,
    round_id: int,
    payload: AssignPlayersRequest,
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    players = await orchestrator.assign_players(tournament_id, round_id, payload.player_ids)
    return [PlayerResponse.model_validate(p) for p in players]


@router.post("/rounds/{round_id}/start", response_model=RoundResponse)
async def start_round(
    tournament_id: int,
    round_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    round_obj = await orchestrator.start_round(tournament_id, round_id, idempotency_key=idempotency_key)
    return RoundResponse.model_validate(round_obj)


@router.post("/rounds/{round_id}/open", response_model=RoundResponse)
async def open_player(
    tournament_id: int,
    round_id: int,
    payload: OpenPlayerRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    round_obj = await orchestrator.open_player(
        tournament_id, round_id, payload.player_id, idempotency_key=idempotency_key
    )
    return RoundResponse.model_validate(round_obj)


@router.post("/rounds/{round_id}/close-player", response_model=RoundResponse)
async def close_player(
    tournament_id: int,
    round_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    round_obj = await orchestrator.close_player(tournament_id, round_id, idempotency_key=idempotency_key)
    return RoundResponse.model_validate(round_obj)


@router.post("/rounds/{round_id}/complete", response_model=RoundResponse)
async def complete_round(
    tournament_id: int,
    round_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    round_obj = await orchestrator.complete_round(tournament_id, round_id, idempotency_key=idempotency_key)
    return RoundResponse.model_validate(round_obj)


@router.post("/rounds/{round_id}/force-close", response_model=RoundResponse)
async def force_close_round(
    tournament_id: int,
    round_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    """Admin only: close the round now; the player under bid goes UNSOLD."""
    round_obj = await orchestrator.force_close_round(tournament_id, round_id, idempotency_key=idempotency_key)
    return RoundResponse.model_validate(round_obj)


# =============================================================================
# Bidding and Settlement
# =============================================================================

@router.post("/bids", response_model=BidResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.AUCTION_BID_RATE_LIMIT)
async def place_bid(
    request: Request,  # Required by slowapi
    tournament_id: int,
    bid: BidCreate,
    idempotency_key: str = Header(..., alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    placed = await orchestrator.place_bid(
        tournament_id, bid.team_id, bid.player_id, bid.amount, idempotency_key=idempotency_key
    )
    return BidResponse.model_validate(placed)


@router.get("/players/{player_id}/bids", response_model=List[BidResponse])
async def list_player_bids(tournament_id: int, player_id: int, db: AsyncSession = Depends(get_db)):
    store = LedgerStore(db)
    await store.get_player(player_id, tournament_id)
    return [BidResponse.model_validate(b) for b in await store.bids_for_player(player_id)]


@router.post("/sell", response_model=SaleResponse)
async def sell(
    tournament_id: int,
    payload: SellRequest,
    idempotency_key: str = Header(..., alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    sale = await orchestrator.sell(tournament_id, payload.player_id, idempotency_key=idempotency_key)
    return SaleResponse.model_validate(sale)


@router.post("/unsold", response_model=PlayerResponse)
async def mark_unsold(
    tournament_id: int,
    payload: UnsoldRequest,
    idempotency_key: str = Header(..., alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    player = await orchestrator.mark_unsold(
        tournament_id, payload.player_id, override=payload.override, idempotency_key=idempotency_key
    )
    return PlayerResponse.model_validate(player)


@router.post("/reselect", response_model=PlayerResponse)
async def reselect(
    tournament_id: int,
    payload: ReselectRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    player = await orchestrator.reselect(tournament_id, payload.player_id, idempotency_key=idempotency_key)
    return PlayerResponse.model_validate(player)


# =============================================================================
# Auction Status
# =============================================================================

@router.post("/start", response_model=TournamentResponse)
async def start_auction(
    tournament_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    tournament = await orchestrator.start_auction(tournament_id, idempotency_key=idempotency_key)
    return TournamentResponse.model_validate(tournament)


@router.post("/pause", response_model=TournamentResponse)
async def pause_auction(
    tournament_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    tournament = await orchestrator.pause_auction(tournament_id, idempotency_key=idempotency_key)
    return TournamentResponse.model_validate(tournament)


@router.post("/resume", response_model=TournamentResponse)
async def resume_auction(
    tournament_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    tournament = await orchestrator.resume_auction(tournament_id, idempotency_key=idempotency_key)
    return TournamentResponse.model_validate(tournament)


@router.post("/end", response_model=TournamentResponse)
async def end_auction(
    tournament_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=IDEMPOTENCY_KEY_MAX_LENGTH),
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    """Force-close the active round, then mark the auction COMPLETED."""
    tournament = await orchestrator.end_auction(tournament_id, idempotency_key=idempotency_key)
    return TournamentResponse.model_validate(tournament)


# =============================================================================
# Read Views
# =============================================================================

@router.get("/state", response_model=LiveStateResponse)
async def live_state(tournament_id: int, orchestrator: AuctionOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.live_state(tournament_id)


@router.get("/teams/{team_id}", response_model=TeamSummaryResponse)
async def team_summary(
    tournament_id: int,
    team_id: int,
    orchestrator: AuctionOrchestrator = Depends(get_orchestrator)
):
    return await orchestrator.team_summary(tournament_id, team_id)


@router.get("/events", response_model=List[AuctionEventResponse])
async def get_events(
    tournament_id: int,
    after: int = Query(0, ge=0, description="Return events with a higher sequence"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    await LedgerStore(db).get_tournament(tournament_id)
    events = await list_events(tournament_id, db, after_sequence=after, limit=limit)
    return [AuctionEventResponse.model_validate(e) for e in events]


@router.get("/events/verify", response_model=ChainVerificationResponse)
async def verify_events(tournament_id: int, db: AsyncSession = Depends(get_db)):
    await LedgerStore(db).get_tournament(tournament_id)
    return await verify_event_chain(tournament_id, db)
