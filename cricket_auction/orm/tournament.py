"""
Tournament registration ORM models

Tournament, Team and Player are supplied by registration before the
auction starts. The auction core reads them and only mutates the
auction-owned columns (status, budgets, round pointers) through the
ledger store.
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, ForeignKey, UniqueConstraint, Index, CheckConstraint
)

from cricket_auction.orm.base import VersionedModel


# =============================================================================
# Enums
# =============================================================================

class AuctionStatus(PyEnum):
    NOT_STARTED = "NOT_STARTED"
    ONGOING = "ONGOING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class PlayerStatus(PyEnum):
    AVAILABLE = "AVAILABLE"
    IN_AUCTION = "IN_AUCTION"
    SOLD = "SOLD"
    UNSOLD = "UNSOLD"


# =============================================================================
# Table: tournaments
# =============================================================================

class Tournament(VersionedModel):
    """
    An auction event.

    Budget and squad settings are frozen once the first round starts;
    only `auction_status` and `active_round_id` move after that.
    """
    __tablename__ = "tournaments"

    name = Column(String(200), nullable=False)
    auction_budget = Column(Integer, nullable=False)
    min_player_points = Column(Integer, nullable=False, default=0)
    bid_increment = Column(Integer, nullable=False, default=0)
    min_players_per_team = Column(Integer, nullable=True)
    max_players_per_team = Column(Integer, nullable=True)
    auction_status = Column(String(20), nullable=False, default=AuctionStatus.NOT_STARTED.value)

    # Guard for "one ACTIVE round per tournament"; no FK, rounds reference tournaments
    active_round_id = Column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("auction_budget >= 0", name="ck_tournament_budget_non_negative"),
        CheckConstraint("min_player_points >= 0", name="ck_tournament_min_points_non_negative"),
        CheckConstraint("bid_increment >= 0", name="ck_tournament_increment_non_negative"),
        CheckConstraint(
            "auction_status IN ('NOT_STARTED', 'ONGOING', 'PAUSED', 'COMPLETED')",
            name="ck_tournament_auction_status_valid"
        ),
    )

    @property
    def has_started(self) -> bool:
        return self.auction_status != AuctionStatus.NOT_STARTED.value

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "auction_budget": self.auction_budget,
            "min_player_points": self.min_player_points,
            "bid_increment": self.bid_increment,
            "min_players_per_team": self.min_players_per_team,
            "max_players_per_team": self.max_players_per_team,
            "auction_status": self.auction_status,
            "active_round_id": self.active_round_id,
            "version": self.version,
        }


# =============================================================================
# Table: teams
# =============================================================================

class Team(VersionedModel):
    """
    A bidding entity.

    `remaining_budget` is written only by settlement and always equals
    total_budget minus the sold prices of the team's SOLD players.
    """
    __tablename__ = "teams"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(200), nullable=False)
    owner_name = Column(String(200), nullable=True)
    owner_email = Column(String(255), nullable=True)
    total_budget = Column(Integer, nullable=False)
    remaining_budget = Column(Integer, nullable=False)
    players_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tournament_id", "name", name="uq_team_tournament_name"),
        CheckConstraint("total_budget >= 0", name="ck_team_total_budget_non_negative"),
        CheckConstraint("remaining_budget >= 0", name="ck_team_remaining_budget_non_negative"),
        CheckConstraint("players_count >= 0", name="ck_team_players_count_non_negative"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "name": self.name,
            "owner_name": self.owner_name,
            "total_budget": self.total_budget,
            "remaining_budget": self.remaining_budget,
            "players_count": self.players_count,
            "version": self.version,
        }


# =============================================================================
# Table: players
# =============================================================================

class Player(VersionedModel):
    """An auctionable player registered for exactly one tournament."""
    __tablename__ = "players"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(200), nullable=False)
    position = Column(String(50), nullable=True)
    batting_style = Column(String(50), nullable=True)
    bowling_style = Column(String(50), nullable=True)
    base_price = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=PlayerStatus.AVAILABLE.value)

    round_id = Column(
        Integer,
        ForeignKey("auction_rounds.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    sold_team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    sold_price = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("tournament_id", "name", name="uq_player_tournament_name"),
        Index("idx_player_tournament_status", "tournament_id", "status"),
        CheckConstraint("base_price >= 0", name="ck_player_base_price_non_negative"),
        CheckConstraint(
            "status IN ('AVAILABLE', 'IN_AUCTION', 'SOLD', 'UNSOLD')",
            name="ck_player_status_valid"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "name": self.name,
            "position": self.position,
            "base_price": self.base_price,
            "status": self.status,
            "round_id": self.round_id,
            "sold_team_id": self.sold_team_id,
            "sold_price": self.sold_price,
            "version": self.version,
        }
