"""
Pydantic Schemas for the Auction Core

Request and response models for rounds, bids, settlement and the live view.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from cricket_auction.schemas.registration import TeamResponse, PlayerResponse


# ============================================================================
# Round Schemas
# ============================================================================

class RoundCreate(BaseModel):
    """Schema for creating a round, optionally with its players."""
    name: Optional[str] = Field(None, max_length=100)
    player_ids: List[int] = Field(default_factory=list)


class BulkRoundCreate(BaseModel):
    """Schema for creating several rounds at once."""
    rounds: List[RoundCreate] = Field(..., min_length=1)


class AssignPlayersRequest(BaseModel):
    player_ids: List[int] = Field(..., min_length=1)


class OpenPlayerRequest(BaseModel):
    player_id: int = Field(..., description="Player to put under bid")


class RoundResponse(BaseModel):
    id: int
    tournament_id: int
    round_number: int
    name: str
    status: str
    current_player_id: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    force_closed: bool
    version: int

    class Config:
        from_attributes = True


# ============================================================================
# Bid and Settlement Schemas
# ============================================================================

class BidCreate(BaseModel):
    team_id: int
    player_id: int
    amount: int = Field(..., gt=0)


class BidResponse(BaseModel):
    id: int
    tournament_id: int
    round_id: int
    player_id: int
    team_id: int
    amount: int
    status: str
    placed_at: datetime

    class Config:
        from_attributes = True


class SellRequest(BaseModel):
    player_id: int


class UnsoldRequest(BaseModel):
    player_id: int
    override: bool = Field(False, description="Supersede any ACTIVE bids instead of refusing")


class ReselectRequest(BaseModel):
    player_id: int


class SaleResponse(BaseModel):
    id: int
    tournament_id: int
    round_id: int
    player_id: int
    team_id: int
    bid_id: int
    amount: int
    sold_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# Read Views
# ============================================================================

class TeamStanding(TeamResponse):
    committed_spend: int
    held_amount: int
    max_allowed_bid: int
    is_consistent: bool


class LiveStateResponse(BaseModel):
    tournament: Dict[str, Any]
    active_round: Optional[Dict[str, Any]] = None
    current_player: Optional[Dict[str, Any]] = None
    highest_bid: Optional[Dict[str, Any]] = None
    active_bids: List[Dict[str, Any]]
    teams: List[TeamStanding]
    rounds: List[Dict[str, Any]]
    last_event_sequence: int


class TeamSummaryResponse(BaseModel):
    team: TeamResponse
    players: List[PlayerResponse]
    committed_spend: int
    remaining_budget: int
    held_amount: int
    max_allowed_bid: int
    is_consistent: bool


class AuctionEventResponse(BaseModel):
    sequence: int
    event_type: str
    entity_type: str
    entity_id: int
    event_data: Dict[str, Any]
    event_hash: str
    previous_hash: str
    created_at: datetime

    class Config:
        from_attributes = True


class ChainVerificationResponse(BaseModel):
    is_valid: bool
    total_events: int
    first_broken_sequence: Optional[int] = None
    errors: List[str]
