"""
Auction ORM Models

Ledger tables for the player auction:
- Rounds with a single "player under bid" pointer
- Immutable bids tagged ACTIVE / SUPERSEDED / WON
- Time-boxed budget reservations
- Append-only sale records and domain events
- Idempotency keys for retried requests
"""
import json
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Boolean,
    UniqueConstraint, Index, CheckConstraint, event
)

from cricket_auction.orm.base import Base, BaseModel, VersionedModel


# =============================================================================
# Enums
# =============================================================================

class RoundStatus(PyEnum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class BidStatus(PyEnum):
    ACTIVE = "ACTIVE"
    SUPERSEDED = "SUPERSEDED"
    WON = "WON"


class ReservationStatus(PyEnum):
    HELD = "HELD"
    RELEASED = "RELEASED"
    CONVERTED = "CONVERTED"


class AuctionEventType(PyEnum):
    ROUND_CREATED = "ROUND_CREATED"
    ROUND_STARTED = "ROUND_STARTED"
    PLAYER_OPENED = "PLAYER_OPENED"
    BID_PLACED = "BID_PLACED"
    PLAYER_SOLD = "PLAYER_SOLD"
    PLAYER_UNSOLD = "PLAYER_UNSOLD"
    PLAYER_RESELECTED = "PLAYER_RESELECTED"
    ROUND_COMPLETED = "ROUND_COMPLETED"
    AUCTION_STATUS_CHANGED = "AUCTION_STATUS_CHANGED"


class AppendOnlyViolation(RuntimeError):
    """Raised when an append-only row is updated or deleted."""
    pass


# =============================================================================
# Table: auction_rounds
# =============================================================================

class AuctionRound(VersionedModel):
    """
    A group of players auctioned in sequence.

    PENDING -> ACTIVE -> COMPLETED. `current_player_id` is set only while
    the round is ACTIVE and a player is open for bidding.
    """
    __tablename__ = "auction_rounds"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round_number = Column(Integer, nullable=False)
    name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=RoundStatus.PENDING.value)
    current_player_id = Column(Integer, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    force_closed = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("tournament_id", "round_number", name="uq_round_tournament_number"),
        Index("idx_round_tournament_status", "tournament_id", "status"),
        CheckConstraint("round_number > 0", name="ck_round_number_positive"),
        CheckConstraint(
            "status IN ('PENDING', 'ACTIVE', 'COMPLETED')",
            name="ck_round_status_valid"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round_number": self.round_number,
            "name": self.name,
            "status": self.status,
            "current_player_id": self.current_player_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "force_closed": self.force_closed,
            "version": self.version,
        }


# =============================================================================
# Table: auction_bids
# =============================================================================

class AuctionBid(VersionedModel):
    """
    A bid by a team on a player.

    Team, player and amount never change after insert; only the status
    tag moves (ACTIVE -> SUPERSEDED, or ACTIVE -> WON at settlement).
    """
    __tablename__ = "auction_bids"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round_id = Column(
        Integer,
        ForeignKey("auction_rounds.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    player_id = Column(
        Integer,
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False
    )
    team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=BidStatus.ACTIVE.value)
    hold_id = Column(String(64), nullable=True)
    placed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_bid_player_status", "player_id", "status"),
        CheckConstraint("amount > 0", name="ck_bid_amount_positive"),
        CheckConstraint(
            "status IN ('ACTIVE', 'SUPERSEDED', 'WON')",
            name="ck_bid_status_valid"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round_id": self.round_id,
            "player_id": self.player_id,
            "team_id": self.team_id,
            "amount": self.amount,
            "status": self.status,
            "placed_at": self.placed_at.isoformat() if self.placed_at else None,
        }


# =============================================================================
# Table: budget_reservations
# =============================================================================

class BudgetReservation(VersionedModel):
    """
    Provisional hold against a team's budget for its leading bid.

    Expiry is evaluated on read; an expired HELD row no longer counts.
    """
    __tablename__ = "budget_reservations"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    player_id = Column(
        Integer,
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    bid_id = Column(
        Integer,
        ForeignKey("auction_bids.id", ondelete="SET NULL"),
        nullable=True
    )
    hold_id = Column(String(64), nullable=False, unique=True)
    amount = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=ReservationStatus.HELD.value)
    expires_at = Column(DateTime, nullable=False)
    released_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_reservation_team_status", "team_id", "status"),
        CheckConstraint("amount > 0", name="ck_reservation_amount_positive"),
        CheckConstraint(
            "status IN ('HELD', 'RELEASED', 'CONVERTED')",
            name="ck_reservation_status_valid"
        ),
    )


# =============================================================================
# Table: sale_records (append-only)
# =============================================================================

class SaleRecord(BaseModel):
    """Immutable record of a completed sale. One per player."""
    __tablename__ = "sale_records"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round_id = Column(
        Integer,
        ForeignKey("auction_rounds.id", ondelete="RESTRICT"),
        nullable=False
    )
    player_id = Column(
        Integer,
        ForeignKey("players.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True
    )
    team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    bid_id = Column(
        Integer,
        ForeignKey("auction_bids.id", ondelete="RESTRICT"),
        nullable=False
    )
    amount = Column(Integer, nullable=False)
    sold_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_sale_amount_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round_id": self.round_id,
            "player_id": self.player_id,
            "team_id": self.team_id,
            "bid_id": self.bid_id,
            "amount": self.amount,
            "sold_at": self.sold_at.isoformat() if self.sold_at else None,
        }


# =============================================================================
# Table: idempotency_records
# =============================================================================

IDEMPOTENCY_KEY_MAX_LENGTH = 128


class IdempotencyRecord(Base):
    """
    Caller-supplied request key bound to the resource its first
    successful execution produced.
    """
    __tablename__ = "idempotency_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False
    )
    key = Column(String(IDEMPOTENCY_KEY_MAX_LENGTH), nullable=False)
    operation = Column(String(50), nullable=False)
    request_fingerprint = Column(String(64), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tournament_id", "key", name="uq_idempotency_tournament_key"),
    )


# =============================================================================
# Table: auction_events (append-only, hash-chained)
# =============================================================================

class AuctionEvent(Base):
    """
    Domain event written in the same transaction as the change it
    describes. Hash chained per tournament for tamper detection.
    """
    __tablename__ = "auction_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False
    )
    sequence = Column(Integer, nullable=False)
    event_type = Column(String(40), nullable=False)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Integer, nullable=False)
    event_data_json = Column(Text, nullable=False)
    previous_hash = Column(String(64), nullable=False)
    event_hash = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tournament_id", "sequence", name="uq_event_tournament_sequence"),
        Index("idx_event_tournament_type", "tournament_id", "event_type"),
        CheckConstraint("sequence > 0", name="ck_event_sequence_positive"),
    )

    @property
    def event_data(self):
        return json.loads(self.event_data_json) if self.event_data_json else {}

    def to_message(self):
        """Broadcast payload for subscribers."""
        return {
            "tournament_id": self.tournament_id,
            "event_sequence": self.sequence,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "event_data": self.event_data,
            "event_hash": self.event_hash,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =============================================================================
# Append-Only Guards
# =============================================================================

@event.listens_for(AuctionEvent, 'before_update')
def prevent_event_update(mapper, connection, target):
    raise AppendOnlyViolation("AuctionEvent is append-only. Updates are prohibited.")


@event.listens_for(AuctionEvent, 'before_delete')
def prevent_event_delete(mapper, connection, target):
    raise AppendOnlyViolation("AuctionEvent is append-only. Deletions are prohibited.")


@event.listens_for(SaleRecord, 'before_update')
def prevent_sale_update(mapper, connection, target):
    raise AppendOnlyViolation("SaleRecord is append-only. Updates are prohibited.")


@event.listens_for(SaleRecord, 'before_delete')
def prevent_sale_delete(mapper, connection, target):
    raise AppendOnlyViolation("SaleRecord is append-only. Deletions are prohibited.")
