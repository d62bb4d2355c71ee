"""
Tournament Registration API Routes

Tournaments, teams and players that the auction runs on.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cricket_auction.database import get_db
from cricket_auction.services import registration_service
from cricket_auction.schemas.registration import (
    TournamentCreate, TournamentUpdate, TournamentResponse,
    TeamCreate, TeamResponse,
    PlayerCreate, PlayerResponse
)


router = APIRouter(
    prefix="/api/tournaments",
    tags=["Registration"],
    responses={
        400: {"description": "Registration rejected"},
        404: {"description": "Resource not found"},
        409: {"description": "Tournament settings frozen"}
    }
)


# =============================================================================
# Tournaments
# =============================================================================

@router.post("", response_model=TournamentResponse, status_code=status.HTTP_201_CREATED)
async def create_tournament(payload: TournamentCreate, db: AsyncSession = Depends(get_db)):
    tournament = await registration_service.create_tournament(db, **payload.model_dump())
    return TournamentResponse.model_validate(tournament)


@router.get("", response_model=List[TournamentResponse])
async def list_tournaments(db: AsyncSession = Depends(get_db)):
    tournaments = await registration_service.list_tournaments(db)
    return [TournamentResponse.model_validate(t) for t in tournaments]


@router.get("/{tournament_id}", response_model=TournamentResponse)
async def get_tournament(tournament_id: int, db: AsyncSession = Depends(get_db)):
    tournament = await registration_service.get_tournament(db, tournament_id)
    return TournamentResponse.model_validate(tournament)


@router.patch("/{tournament_id}", response_model=TournamentResponse)
async def update_tournament(tournament_id: int, payload: TournamentUpdate, db: AsyncSession = Depends(get_db)):
    """Change settings. Rejected once the auction has started."""
    tournament = await registration_service.update_tournament(
        db, tournament_id, **payload.model_dump(exclude_unset=True)
    )
    return TournamentResponse.model_validate(tournament)


# =============================================================================
# Teams
# =============================================================================

@router.post("/{tournament_id}/teams", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def register_team(tournament_id: int, payload: TeamCreate, db: AsyncSession = Depends(get_db)):
    team = await registration_service.register_team(db, tournament_id, **payload.model_dump())
    return TeamResponse.model_validate(team)


@router.get("/{tournament_id}/teams", response_model=List[TeamResponse])
async def list_teams(tournament_id: int, db: AsyncSession = Depends(get_db)):
    teams = await registration_service.list_teams(db, tournament_id)
    return [TeamResponse.model_validate(t) for t in teams]


# =============================================================================
# Players
# =============================================================================

@router.post("/{tournament_id}/players", response_model=PlayerResponse, status_code=status.HTTP_201_CREATED)
async def register_player(tournament_id: int, payload: PlayerCreate, db: AsyncSession = Depends(get_db)):
    player = await registration_service.register_player(db, tournament_id, **payload.model_dump())
    return PlayerResponse.model_validate(player)


@router.get("/{tournament_id}/players", response_model=List[PlayerResponse])
async def list_players(
    tournament_id: int,
    player_status: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db)
):
    players = await registration_service.list_players(db, tournament_id, status=player_status)
    return [PlayerResponse.model_validate(p) for p in players]
