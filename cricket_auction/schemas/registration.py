"""
Pydantic Schemas for Tournament Registration

Request and response models for tournaments, teams and players.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


# ============================================================================
# Tournament Schemas
# ============================================================================

class TournamentCreate(BaseModel):
    """Schema for creating a tournament."""
    name: str = Field(..., min_length=1, max_length=200)
    auction_budget: int = Field(..., ge=0, description="Budget given to every team")
    min_player_points: int = Field(0, ge=0, description="Minimum valuation of any player")
    bid_increment: int = Field(0, ge=0, description="Minimum raise over the current high bid (0 = any raise)")
    min_players_per_team: Optional[int] = Field(None, ge=0)
    max_players_per_team: Optional[int] = Field(None, ge=1)


class TournamentUpdate(BaseModel):
    """Schema for updating tournament settings before the auction starts."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    auction_budget: Optional[int] = Field(None, ge=0)
    min_player_points: Optional[int] = Field(None, ge=0)
    bid_increment: Optional[int] = Field(None, ge=0)
    min_players_per_team: Optional[int] = Field(None, ge=0)
    max_players_per_team: Optional[int] = Field(None, ge=1)


class TournamentResponse(BaseModel):
    id: int
    name: str
    auction_budget: int
    min_player_points: int
    bid_increment: int
    min_players_per_team: Optional[int] = None
    max_players_per_team: Optional[int] = None
    auction_status: str
    active_round_id: Optional[int] = None
    version: int
    created_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# Team Schemas
# ============================================================================

class TeamCreate(BaseModel):
    """Schema for registering a team. Budget defaults to the tournament budget."""
    name: str = Field(..., min_length=1, max_length=200)
    owner_name: Optional[str] = Field(None, max_length=200)
    owner_email: Optional[str] = Field(None, max_length=255)
    total_budget: Optional[int] = Field(None, ge=0)


class TeamResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    owner_name: Optional[str] = None
    total_budget: int
    remaining_budget: int
    players_count: int
    version: int

    class Config:
        from_attributes = True


# ============================================================================
# Player Schemas
# ============================================================================

class PlayerCreate(BaseModel):
    """Schema for registering a player."""
    name: str = Field(..., min_length=1, max_length=200)
    base_price: int = Field(0, ge=0)
    position: Optional[str] = Field(None, max_length=50)
    batting_style: Optional[str] = Field(None, max_length=50)
    bowling_style: Optional[str] = Field(None, max_length=50)


class PlayerResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    position: Optional[str] = None
    batting_style: Optional[str] = None
    bowling_style: Optional[str] = None
    base_price: int
    status: str
    round_id: Optional[int] = None
    sold_team_id: Optional[int] = None
    sold_price: Optional[int] = None
    version: int

    class Config:
        from_attributes = True
